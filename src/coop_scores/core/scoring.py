"""Coop duration reconstruction and composite score (CS) engine.

Turns a point-in-time coop status into an estimated completion duration,
a per-player contribution factor, a buff-derived teamwork value and the
final lower/upper CS bounds. Everything here is pure and synchronous.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from .errors import (
    InvalidContributorDataError,
    InvalidParameterError,
    InvalidSpecError,
    MissingDataError,
    ScoringError,
    ZeroRateError,
)
from .grading import resolve_grade
from .models import (
    DEFAULT_CONSTANTS,
    BuffEvent,
    ContractSpec,
    Contributor,
    CoopResult,
    CoopSnapshot,
    CoopState,
    GradeAssignment,
    GradeParameters,
    ScoredPlayerRecord,
    ScoringConstants,
    is_integral,
    is_number,
)

logger = logging.getLogger(__name__)


# ─── Duration ────────────────────────────────────────────────────────────────


def coop_state(snapshot: CoopSnapshot) -> CoopState:
    if snapshot.all_goals_achieved:
        return CoopState.COMPLETED
    return CoopState.IN_PROGRESS


def contributor_rate(contributor: Contributor) -> float:
    """Eggs per second for a contributor, preferring ``contributionRate``."""
    if contributor.contribution_rate is not None:
        return contributor.contribution_rate
    if contributor.contribution_rate_per_second is not None:
        return contributor.contribution_rate_per_second
    raise InvalidContributorDataError(
        f"Invalid contributor data for {contributor.user_name or 'unknown'}: "
        "contributionRate or contributionRatePerSecond must be a number."
    )


def offline_seconds(contributor: Contributor) -> float:
    """Seconds the contributor's farm has gone unreported, or 0."""
    if contributor.farm_info is not None and contributor.farm_info.timestamp is not None:
        return abs(contributor.farm_info.timestamp)
    if contributor.offline_seconds:
        return abs(contributor.offline_seconds)
    return 0.0


def _completed_duration(snapshot: CoopSnapshot, max_allowed_seconds: int, main_goal: int) -> float:
    since_completion = snapshot.seconds_since_all_goals_achieved or 0
    duration = max_allowed_seconds - snapshot.seconds_remaining - since_completion
    return max(0.0, duration)


def _in_progress_duration(snapshot: CoopSnapshot, max_allowed_seconds: int, main_goal: int) -> float:
    contributors = snapshot.coop_contributors
    if contributors is None:
        raise MissingDataError("Coop status has no contributor list")

    eggs_remaining = max(0.0, main_goal - snapshot.total_amount)
    total_rate = 0.0
    for contributor in contributors:
        rate = contributor_rate(contributor)
        # Eggs laid while offline are not in totalAmount yet.
        eggs_remaining -= rate * offline_seconds(contributor)
        total_rate += rate

    if total_rate <= 0:
        raise ZeroRateError("Invalid state: total contribution rate must be greater than zero.")

    eggs_remaining = max(0.0, eggs_remaining)
    elapsed = max_allowed_seconds - snapshot.seconds_remaining
    return max(0.0, elapsed + eggs_remaining / total_rate)


_DURATION_ESTIMATORS: dict[CoopState, Callable[[CoopSnapshot, int, int], float]] = {
    CoopState.COMPLETED: _completed_duration,
    CoopState.IN_PROGRESS: _in_progress_duration,
}


def estimate_duration(snapshot: CoopSnapshot, max_allowed_seconds: int, main_goal: int) -> float:
    """Estimate how many seconds the coop takes to reach its main goal.

    Completed coops subtract the slack left at completion from the allowance.
    In-progress coops add the time the team needs, at its combined rate, to
    ship what is left after crediting eggs laid while players were offline.
    """
    if not is_integral(max_allowed_seconds) or not is_integral(main_goal):
        raise InvalidParameterError(
            "Invalid input: max_allowed_seconds and main_goal must be integers."
        )
    if not is_number(snapshot.total_amount) or not is_number(snapshot.seconds_remaining):
        raise MissingDataError(
            "Invalid coop status: totalAmount and secondsRemaining must be numbers."
        )
    estimator = _DURATION_ESTIMATORS[coop_state(snapshot)]
    return estimator(snapshot, int(max_allowed_seconds), int(main_goal))


# ─── Buffs ───────────────────────────────────────────────────────────────────


def _valid_buff_events(buff_history: Iterable[Any]) -> list[BuffEvent]:
    events = []
    for raw in buff_history:
        try:
            events.append(raw if isinstance(raw, BuffEvent) else BuffEvent.model_validate(raw))
        except ValidationError:
            logger.debug("Skipping malformed buff event: %r", raw)
    return events


def buff_time_value(
    buff_history: Iterable[Any],
    reference_timestamp: float,
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> float:
    """Cumulative productivity gained from temporary buffs.

    Each buff stays active until the next (earlier, in server time) buff in
    the history, or until ``reference_timestamp``. Buffs at or before the
    reference time contribute nothing. Deflector (egg laying) percentage is
    weighted 7.5 per second, SIAB (earnings) percentage 0.75.
    """
    if not is_number(reference_timestamp):
        raise InvalidParameterError(f"Reference timestamp must be a number, got {reference_timestamp!r}")

    events = sorted(
        _valid_buff_events(buff_history),
        key=lambda e: (e.server_time, e.egg_laying_buff, e.earnings_buff),
        reverse=True,
    )

    value = 0.0
    for i, event in enumerate(events):
        start = event.server_time
        if start <= reference_timestamp:
            continue

        end = reference_timestamp
        if i < len(events) - 1:
            end = max(events[i + 1].server_time, reference_timestamp)

        duration = start - end
        if duration <= 0:
            continue

        egg_laying_pct = (event.egg_laying_buff - 1) * 100
        earnings_pct = (event.earnings_buff - 1) * 100
        if egg_laying_pct > 0:
            value += duration * constants.egg_laying_weight * (egg_laying_pct / 100)
        if earnings_pct > 0:
            value += duration * constants.earnings_weight * (earnings_pct / 100)

    return value


# ─── Contribution ────────────────────────────────────────────────────────────


def contribution_factor(ratio: float, constants: ScoringConstants = DEFAULT_CONSTANTS) -> float:
    """Map a contribution ratio to its factor.

    Power curve up to the 2.5 breakpoint, then a shallow line that stops
    growing past a ratio of 12.5.
    """
    if not is_number(ratio) or ratio < 0:
        raise InvalidParameterError(f"Contribution ratio must be a non-negative number, got {ratio!r}")
    if ratio <= constants.contribution_breakpoint:
        return constants.contribution_low_scale * ratio ** constants.contribution_low_exponent + constants.contribution_low_offset
    return constants.contribution_high_slope * min(ratio, constants.contribution_cap) + constants.contribution_high_offset


def contribution_ratio(eggs_shipped: float, main_goal: int, max_coop_size: Optional[int]) -> float:
    """Eggs shipped relative to an even share of the goal across the coop's capacity."""
    if not is_integral(main_goal) or not is_integral(max_coop_size):
        raise InvalidSpecError("Contract main goal and max coop size must be integers")
    if main_goal <= 0 or max_coop_size <= 0:
        raise InvalidSpecError(
            f"Contract main goal and max coop size must be positive, got {main_goal!r} and {max_coop_size!r}"
        )
    return eggs_shipped / (main_goal / max_coop_size)


# ─── Composite score ─────────────────────────────────────────────────────────


def base_points(grade: GradeParameters, constants: ScoringConstants = DEFAULT_CONSTANTS) -> float:
    return (1 + grade.max_time_seconds / constants.base_length_seconds) * grade.multiplier


def completion_time_bonus(
    duration: float,
    max_time_seconds: int,
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> float:
    """Bonus for finishing under the time limit. Not clamped: overtime drops it below 1."""
    remaining_fraction = 1 - duration / max_time_seconds
    return constants.completion_bonus_scale * remaining_fraction ** constants.completion_bonus_exponent + 1


def teamwork_factors(
    buff_value: float,
    duration: float,
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> tuple[float, float]:
    """Lower and upper teamwork factors from buff value per second of play."""
    if duration > 0:
        buff_rate = min(buff_value / duration, constants.buff_rate_cap)
    else:
        buff_rate = constants.buff_rate_cap if buff_value > 0 else 0.0

    weighted = constants.teamwork_buff_weight * buff_rate
    teamwork_score = weighted / constants.teamwork_divisor
    upper_teamwork_score = (weighted + constants.upper_teamwork_bonus) / constants.teamwork_divisor
    return (
        constants.teamwork_weight * teamwork_score + 1,
        constants.teamwork_weight * upper_teamwork_score + 1,
    )


def is_green_scroll(snapshot: CoopSnapshot) -> bool:
    """Everyone finished and reported, or the grace period is over."""
    if snapshot.all_goals_achieved and snapshot.all_members_reporting:
        return True
    return snapshot.grace_period_seconds_remaining == 0


def _sentinel_record(contributor: Contributor, green_scroll: bool, error: str) -> ScoredPlayerRecord:
    return ScoredPlayerRecord(
        ei_uuid=contributor.ei_uuid or "unknown",
        user_name=contributor.user_name or "unknown",
        eggs_shipped=contributor.contribution_amount or 0,
        contribution_ratio=0,
        contribution_factor=0,
        completion_time_bonus=1,
        time_to_complete_factor=1,
        green_scroll=green_scroll,
        buff_history=[],
        buff_value=0,
        team_work=1,
        upper_team_work=1,
        cs=0,
        upper_cs=0,
        error=error,
    )


def score_player(
    contributor: Contributor,
    grade: GradeParameters,
    duration: float,
    max_coop_size: Optional[int],
    green_scroll: bool,
    buff_reference: float,
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> ScoredPlayerRecord:
    """Score one contributor.

    Never raises ScoringError: a failure produces a zeroed record carrying
    the error message, so one bad player cannot discard the coop.
    """
    try:
        buff_history = contributor.buff_history
        buff_value = buff_time_value(buff_history, buff_reference, constants)

        eggs_shipped = contributor.contribution_amount
        if eggs_shipped is None:
            raise InvalidContributorDataError(
                f"Invalid contribution amount for user {contributor.user_name or 'unknown'}"
            )
        if eggs_shipped < 0:
            raise InvalidContributorDataError(
                f"Negative contribution amount for user {contributor.user_name or 'unknown'}"
            )

        ratio = contribution_ratio(eggs_shipped, grade.main_goal, max_coop_size)
        factor = contribution_factor(ratio, constants)
        bonus = completion_time_bonus(duration, grade.max_time_seconds, constants)
        team_work, upper_team_work = teamwork_factors(buff_value, duration, constants)

        base = base_points(grade, constants) * factor * bonus * constants.cs_scale
        return ScoredPlayerRecord(
            ei_uuid=contributor.ei_uuid or "unknown",
            user_name=contributor.user_name or "unknown",
            eggs_shipped=eggs_shipped,
            contribution_ratio=ratio,
            contribution_factor=factor,
            completion_time_bonus=bonus,
            time_to_complete_factor=duration / grade.max_time_seconds,
            green_scroll=green_scroll,
            buff_history=buff_history,
            buff_value=buff_value,
            team_work=team_work,
            upper_team_work=upper_team_work,
            cs=base * team_work,
            upper_cs=base * upper_team_work,
        )
    except ScoringError as exc:
        logger.warning("Error scoring player %s: %s", contributor.user_name or "unknown", exc)
        return _sentinel_record(contributor, green_scroll, str(exc))


def _dump(model: Any) -> dict[str, Any]:
    if model is None:
        return {}
    if isinstance(model, Mapping):
        return dict(model)
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def score_coop(
    snapshot: Optional[CoopSnapshot],
    contract: Optional[ContractSpec],
    assignment: Optional[GradeAssignment],
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> CoopResult:
    """Score every contributor of a coop.

    Setup failures (missing data, unknown grade, missing or invalid grade
    spec, duration errors) return a CoopResult with ``error`` set and no
    players instead of raising.
    """
    coop_data = _dump(snapshot)
    contract_data = _dump(contract)
    grade_data = _dump(assignment)

    try:
        if snapshot is None:
            raise MissingDataError("Missing coop status data")
        if contract is None:
            raise MissingDataError("Missing contract data")
        if assignment is None:
            raise MissingDataError("Missing grade assignment data")
        if not assignment.grade:
            raise MissingDataError(f"Missing grade information for coop {assignment.code}")

        grade = resolve_grade(assignment.grade, contract, constants)
        green_scroll = is_green_scroll(snapshot)
        duration = estimate_duration(snapshot, grade.max_time_seconds, grade.main_goal)

        contributors = snapshot.coop_contributors
        if contributors is None:
            raise MissingDataError("Missing or invalid coop contributors")
    except ScoringError as exc:
        logger.error(
            "Could not score coop %s/%s: %s",
            contract.contract_identifier if contract else "?",
            assignment.code if assignment else "?",
            exc,
        )
        return CoopResult(
            coop_data=coop_data,
            contract_data=contract_data,
            grade_data=grade_data,
            error=str(exc),
        )

    buff_reference = snapshot.seconds_since_all_goals_achieved or 0
    user_data = [
        score_player(
            contributor,
            grade,
            duration,
            contract.max_coop_size,
            green_scroll,
            buff_reference,
            constants,
        )
        for contributor in contributors
    ]

    return CoopResult(
        coop_data=coop_data,
        contract_data=contract_data,
        grade_data=grade_data,
        user_data=user_data,
        duration_seconds=duration,
    )
