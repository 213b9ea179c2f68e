"""Pydantic models for contracts, coop statuses, the grade registry and scores.

Wire models accept the camelCase JSON returned by the EggCoop API and the
grade registry, and dump back to it with ``by_alias=True``. The scoring code
only reads these objects; nothing in ``core`` mutates a snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integral(value: Any) -> bool:
    """True for ints and integer-valued floats, never for bools."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


class WireModel(BaseModel):
    """Base for models parsed from API payloads. Unknown keys are kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class GradeCode(str, Enum):
    """Letter tiers a coop can be graded at."""

    C = "c"
    B = "b"
    A = "a"
    AA = "aa"
    AAA = "aaa"

    @property
    def identifier(self) -> str:
        """Grade identifier used by contract grade specs, e.g. GRADE_AAA."""
        return f"GRADE_{self.value.upper()}"


class CoopState(str, Enum):
    """Which duration reconstruction applies to a snapshot."""

    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"


class ScoringConstants(BaseModel):
    """Calibration constants for the CS formula.

    The upper teamwork bonus (``upper_teamwork_bonus``) is the opaque 6 + 10
    calibration for contributions a snapshot cannot observe.
    """

    model_config = ConfigDict(frozen=True)

    grade_multipliers: dict[str, float] = Field(
        default_factory=lambda: {"aaa": 7, "aa": 5, "a": 3.5, "b": 2, "c": 1}
    )
    base_length_seconds: int = 259200
    cs_scale: float = 187.5

    egg_laying_weight: float = 7.5
    earnings_weight: float = 0.75

    contribution_breakpoint: float = 2.5
    contribution_cap: float = 12.5
    contribution_low_scale: float = 3.0
    contribution_low_exponent: float = 0.15
    contribution_low_offset: float = 1.0
    contribution_high_slope: float = 0.02221
    contribution_high_offset: float = 4.386486

    completion_bonus_scale: float = 4.0
    completion_bonus_exponent: int = 3

    buff_rate_cap: float = 2.0
    teamwork_buff_weight: float = 5.0
    teamwork_divisor: float = 19.0
    teamwork_weight: float = 0.19
    upper_teamwork_bonus: float = 6 + 10


DEFAULT_CONSTANTS = ScoringConstants()


# ─── Contracts ───────────────────────────────────────────────────────────────


class Goal(WireModel):
    target_amount: Optional[float] = None

    @field_validator("target_amount", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> Any:
        return value if is_number(value) else None


class GoalCollection(WireModel):
    goals: list[Goal] = Field(default_factory=list)


class GradeRef(WireModel):
    ei_identifier: str


class GradeSpec(WireModel):
    """Goal and time allowance for one grade of a contract."""

    grade: Optional[GradeRef] = None
    length_seconds: Optional[Union[int, float]] = None
    goal_collection: Optional[GoalCollection] = None

    @field_validator("length_seconds", mode="before")
    @classmethod
    def _numeric_length(cls, value: Any) -> Any:
        return value if is_number(value) else None

    @property
    def goals(self) -> list[Goal]:
        if self.goal_collection is None:
            return []
        return self.goal_collection.goals


class Season(WireModel):
    ei_season_id: Optional[str] = None
    name: Optional[str] = None


class ContractSpec(WireModel):
    """One game contract as listed by EggCoop."""

    contract_identifier: str
    name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    season: Optional[Season] = None
    max_coop_size: Optional[int] = None
    grade_spec_collection: Optional[str] = None
    grade_specs: Optional[list[GradeSpec]] = None

    @property
    def season_id(self) -> Optional[str]:
        return self.season.ei_season_id if self.season else None


# ─── Coop status ─────────────────────────────────────────────────────────────


class BuffEvent(BaseModel):
    """A buff change reported by the game server. Buffs have no end time."""

    model_config = ConfigDict(strict=True, extra="ignore")

    server_time: float
    egg_laying_buff: float
    earnings_buff: float

    @field_validator("server_time", "egg_laying_buff", "earnings_buff", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("boolean is not a number")
        if isinstance(value, int):
            return float(value)
        return value


class FarmInfo(WireModel):
    timestamp: Optional[float] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> Any:
        return value if is_number(value) else None


class Contributor(WireModel):
    """One player's entry in a coop status.

    Numeric fields that arrive with a non-numeric value are stored as None,
    so a bad player only degrades that player's record.
    """

    ei_uuid: Optional[str] = None
    user_name: Optional[str] = None
    contribution_amount: Optional[float] = None
    contribution_rate: Optional[float] = None
    contribution_rate_per_second: Optional[float] = None
    farm_info: Optional[FarmInfo] = None
    offline_seconds: Optional[float] = None
    buff_history: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator(
        "contribution_amount",
        "contribution_rate",
        "contribution_rate_per_second",
        "offline_seconds",
        mode="before",
    )
    @classmethod
    def _numeric(cls, value: Any) -> Any:
        return value if is_number(value) else None

    @field_validator("farm_info", mode="before")
    @classmethod
    def _farm_info_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, FarmInfo)) else None

    @field_validator("buff_history", mode="before")
    @classmethod
    def _buff_list(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [event for event in value if isinstance(event, dict)]


class CoopSnapshot(WireModel):
    """Latest observed status of a coop."""

    model_config = ConfigDict(frozen=True)

    contract_identifier: Optional[str] = None
    coop: Optional[str] = None
    total_amount: Optional[float] = None
    seconds_remaining: Optional[float] = None
    all_goals_achieved: bool = False
    all_members_reporting: bool = False
    grace_period_seconds_remaining: Optional[float] = None
    seconds_since_all_goals_achieved: Optional[float] = None
    coop_contributors: Optional[list[Contributor]] = Field(
        default=None,
        validation_alias=AliasChoices("coopContributors", "contributorsList", "coop_contributors"),
    )

    @field_validator("coop_contributors", mode="before")
    @classmethod
    def _contributor_entries(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return None
        entries = [entry for entry in value if isinstance(entry, (dict, Contributor))]
        if len(entries) < len(value):
            logger.warning("Skipping %d contributor entries that are not objects", len(value) - len(entries))
        return entries


# ─── Grade registry ──────────────────────────────────────────────────────────


class GradeAssignment(WireModel):
    """Registry entry for one coop: its code, achieved grade and members."""

    code: str
    grade: Optional[Union[str, int]] = None
    users: list[Any] = Field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.users)


class RegistryContract(WireModel):
    """Registry entry grouping the graded coops of one contract."""

    contract: str
    start_time: Optional[Union[int, float, str]] = None
    active_coops: bool = False
    coops: list[GradeAssignment] = Field(default_factory=list)


# ─── Output ──────────────────────────────────────────────────────────────────


class GradeParameters(BaseModel):
    """Scalar parameters a grade contributes to scoring."""

    model_config = ConfigDict(frozen=True)

    grade_identifier: str
    multiplier: float
    main_goal: int
    max_time_seconds: int


class ScoredPlayerRecord(WireModel):
    """Final metrics for one player in one coop."""

    model_config = ConfigDict(frozen=True)

    ei_uuid: str = "unknown"
    user_name: str = "unknown"
    eggs_shipped: float
    contribution_ratio: float
    contribution_factor: float
    completion_time_bonus: float
    time_to_complete_factor: float
    green_scroll: bool
    buff_history: list[dict[str, Any]] = Field(default_factory=list)
    buff_value: float
    team_work: float
    upper_team_work: float
    cs: float
    upper_cs: float = Field(alias="upperCS")
    error: Optional[str] = None


class CoopResult(WireModel):
    """Coop-level scoring output, or a structured error with no players."""

    coop_data: dict[str, Any] = Field(default_factory=dict)
    contract_data: dict[str, Any] = Field(default_factory=dict)
    grade_data: dict[str, Any] = Field(default_factory=dict)
    user_data: list[ScoredPlayerRecord] = Field(default_factory=list)
    duration_seconds: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def contract_id(self) -> Optional[str]:
        return self.contract_data.get("contractIdentifier") or self.coop_data.get("contractIdentifier")

    @property
    def coop_code(self) -> Optional[str]:
        return self.grade_data.get("code") or self.coop_data.get("coop")

    @property
    def green_scroll(self) -> bool:
        return any(player.green_scroll for player in self.user_data)
