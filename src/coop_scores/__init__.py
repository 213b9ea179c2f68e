"""Coop Scores.

Reconstructs per-player composite scores (CS) for Egg, Inc. coops from
EggCoop status snapshots and a grade registry, and keeps a local history.
"""

__version__ = "0.1.0"

from .core.models import CoopResult, ScoredPlayerRecord
from .core.scoring import score_coop

__all__ = ["CoopResult", "ScoredPlayerRecord", "score_coop"]
