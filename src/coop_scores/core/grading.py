"""Grade resolution — letter grade to multiplier, goal and time allowance."""

from __future__ import annotations

import logging
from typing import Union

from .errors import InvalidParameterError, InvalidSpecError, SpecNotFoundError, UnknownGradeError
from .models import (
    DEFAULT_CONSTANTS,
    ContractSpec,
    GradeCode,
    GradeParameters,
    GradeSpec,
    ScoringConstants,
    is_integral,
)

logger = logging.getLogger(__name__)

# Numeric grade ids used by the game client.
GRADE_LABELS_SHORT = {0: "UNKNOWN", 1: "C", 2: "B", 3: "A", 4: "AA", 5: "AAA", 6: "ANY"}
GRADE_LABELS_FULL = {
    0: "UNKNOWN",
    1: "GRADE_C",
    2: "GRADE_B",
    3: "GRADE_A",
    4: "GRADE_AA",
    5: "GRADE_AAA",
    6: "ANY",
}


def parse_grade_code(grade: Union[str, int]) -> GradeCode:
    """Parse a case-insensitive letter grade such as 'AAA' or 'b', or a numeric grade id."""
    if is_integral(grade):
        grade = grade_label(grade, lowercase=True)
    if not isinstance(grade, str):
        raise UnknownGradeError(f"Unknown grade: {grade!r}")
    try:
        return GradeCode(grade.strip().lower())
    except ValueError:
        raise UnknownGradeError(f"Unknown grade: {grade}") from None


def grade_multiplier(grade: str, constants: ScoringConstants = DEFAULT_CONSTANTS) -> float:
    """Score multiplier for a letter grade (aaa=7 ... c=1)."""
    code = parse_grade_code(grade)
    multiplier = constants.grade_multipliers.get(code.value)
    if not multiplier:
        raise UnknownGradeError(f"No multiplier configured for grade: {grade}")
    return multiplier


def find_grade_spec(contract: ContractSpec, grade: GradeCode) -> GradeSpec:
    """Return the contract's grade spec for ``grade``.

    Raises SpecNotFoundError when the contract has no grade specs loaded or
    none of them matches.
    """
    for spec in contract.grade_specs or []:
        if spec.grade is not None and spec.grade.ei_identifier == grade.identifier:
            return spec
    raise SpecNotFoundError(
        f"Could not find grade specification for grade {grade.identifier} "
        f"in contract {contract.contract_identifier}"
    )


def resolve_grade(
    grade: str,
    contract: ContractSpec,
    constants: ScoringConstants = DEFAULT_CONSTANTS,
) -> GradeParameters:
    """Resolve a coop's letter grade against its contract.

    The main goal is the target of the last goal in the grade spec; goals are
    ordered milestones and the final one is full completion.
    """
    code = parse_grade_code(grade)
    multiplier = grade_multiplier(code.value, constants)
    spec = find_grade_spec(contract, code)

    goals = spec.goals
    if not goals:
        raise InvalidSpecError(f"Invalid goal collection for grade {code.identifier}")
    main_goal = goals[-1].target_amount
    if not is_integral(main_goal):
        raise InvalidSpecError(f"Main goal for grade {code.identifier} must be an integer, got {main_goal!r}")

    length = spec.length_seconds
    if not is_integral(length):
        raise InvalidSpecError(f"Contract length must be an integer, got {length!r}")
    if length <= 0:
        raise InvalidSpecError(f"Contract length must be positive, got {length!r}")

    return GradeParameters(
        grade_identifier=code.identifier,
        multiplier=multiplier,
        main_goal=int(main_goal),
        max_time_seconds=int(length),
    )


def grade_label(grade_id: int, full: bool = False, lowercase: bool = False) -> str:
    """Convert a numeric grade id to its label.

    >>> grade_label(3)
    'A'
    >>> grade_label(3, full=True, lowercase=True)
    'grade_a'
    """
    if not is_integral(grade_id):
        raise InvalidParameterError(f"Grade id must be an integer, got {grade_id!r}")
    labels = GRADE_LABELS_FULL if full else GRADE_LABELS_SHORT
    label = labels.get(int(grade_id), "UNKNOWN")
    return label.lower() if lowercase else label
