from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar


PointTable = Mapping[int, int]

# 2014 season allocation, seeded into an empty points table on request.
DEFAULT_POINT_TABLE: Dict[int, int] = {
    1: 25,
    2: 18,
    3: 15,
    4: 12,
    5: 10,
    6: 8,
    7: 6,
    8: 4,
    9: 2,
    10: 1,
}


class ResultStatus(str, Enum):
    COMPLETED = "completed"
    DNF = "dnf"
    DSQ = "dsq"
    RETIRED = "retired"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


class PenaltyKind(str, Enum):
    POINTS_LOSS = "points_loss"
    DISQUALIFICATION = "disqualification"
    TIME_PENALTY = "time_penalty"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _PENALTY_LABELS[self]


_STATUS_LABELS = {
    ResultStatus.COMPLETED: "Completed",
    ResultStatus.DNF: "DNF",
    ResultStatus.DSQ: "DSQ",
    ResultStatus.RETIRED: "Retired",
}

_PENALTY_LABELS = {
    PenaltyKind.POINTS_LOSS: "Points loss",
    PenaltyKind.DISQUALIFICATION: "Disqualification",
    PenaltyKind.TIME_PENALTY: "Time penalty",
    PenaltyKind.OTHER: "Other",
}


def points_for_result(position: int, status: ResultStatus | str, point_table: PointTable) -> int:
    """
    Points earned by a single result at save time.
    Only completed results score; positions missing from the table score 0.
    """
    if ResultStatus(status) is not ResultStatus.COMPLETED:
        return 0
    return int(point_table.get(position, 0))


def deduct_floored(total: int, deduction: int) -> int:
    return max(0, total - deduction)


class HasPosition(Protocol):
    position: int


R = TypeVar("R", bound=HasPosition)


def best_result(results: Iterable[R]) -> Optional[R]:
    """
    Lowest finishing position wins; the first one seen is kept on ties.
    Status is not consulted, so a DNF stored at P1 still counts as best.
    """
    best: Optional[R] = None
    for result in results:
        if best is None or result.position < best.position:
            best = result
    return best


def find_duplicates(values: Sequence[int]) -> List[int]:
    seen: set[int] = set()
    dupes: List[int] = []
    for value in values:
        if value in seen and value not in dupes:
            dupes.append(value)
        seen.add(value)
    return dupes


def validate_result_entries(entries: Sequence[Tuple[int, int]]) -> List[str]:
    """
    Check (position, driver_id) pairs of one race result set.
    Returns human-readable problems; empty list means the set is valid.
    """
    problems: List[str] = []
    if not entries:
        problems.append("At least one result is required")
        return problems

    dup_positions = find_duplicates([position for position, _ in entries])
    if dup_positions:
        problems.append(
            "Duplicate positions: " + ", ".join(str(p) for p in sorted(dup_positions))
        )
    dup_drivers = find_duplicates([driver_id for _, driver_id in entries])
    if dup_drivers:
        problems.append(
            "A driver cannot hold more than one position: "
            + ", ".join(str(d) for d in sorted(dup_drivers))
        )
    return problems
