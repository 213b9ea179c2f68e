"""Error taxonomy for the scoring engine.

Every error raised by the pure scoring code derives from ScoringError, so the
coop and player boundaries can catch one type and attach the message to
their output record.
"""

from __future__ import annotations


class ScoringError(ValueError):
    """Base class for scoring and reconstruction failures."""


class UnknownGradeError(ScoringError):
    """Grade code is not one of c, b, a, aa, aaa."""


class SpecNotFoundError(ScoringError):
    """Contract has no grade specification for the coop's grade."""


class InvalidSpecError(ScoringError):
    """Grade specification or contract field is malformed."""


class InvalidParameterError(ScoringError):
    """A numeric scoring parameter has the wrong type or range."""


class InvalidContributorDataError(ScoringError):
    """Contributor record is missing a usable amount or rate."""


class ZeroRateError(ScoringError):
    """Combined contribution rate of an in-progress coop is not positive."""


class MissingDataError(ScoringError):
    """A required field is absent."""
