from __future__ import annotations

from typing import (
    Callable,
    Dict,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from metrics.continuity import is_dense
from metrics.exceptions import InvariantViolation
from metrics.schemas import Series, WeekValue

T = TypeVar("T")
Acc = TypeVar("Acc")

DenseInput = Union[Series[T], Sequence[WeekValue[T]]]


def merge_series(
    series: Iterable[DenseInput],
    *,
    combine: Callable[[Acc, T], Acc],
    zero: Acc,
    number_of_intervals: int,
) -> List[WeekValue[Acc]]:
    """
    Fold several dense series into one value per week.

    `combine` should be associative and commutative (sum, set union) so the
    result does not depend on the order of `series`. `zero` must not be
    mutated by `combine`.
    """
    rollup: List[Acc] = [zero] * number_of_intervals
    for s in series:
        entries = s.entries if isinstance(s, Series) else s
        if not is_dense(entries, number_of_intervals):
            raise InvariantViolation(
                f"cannot merge a non-dense series ({len(entries)} entries, "
                f"expected {number_of_intervals})"
            )
        for entry in entries:
            rollup[entry.week_index] = combine(rollup[entry.week_index], entry.value)
    return [WeekValue(week_index=i, value=v) for i, v in enumerate(rollup)]


def running_wip_counts(
    entering: Sequence[Iterable[Hashable]],
    leaving: Sequence[Iterable[Hashable]],
    initial: Iterable[Hashable] = (),
) -> List[int]:
    """
    Running work-in-progress count per week.

    For each week, ids in `entering[i]` are added and then ids in `leaving[i]`
    removed from the open set; the week's value is the set size afterwards.
    Must run in ascending week order.
    """
    if len(entering) != len(leaving):
        raise InvariantViolation(
            f"entering ({len(entering)}) and leaving ({len(leaving)}) week counts differ"
        )
    open_ids: Set[Hashable] = set(initial)
    counts: List[int] = []
    for added, done in zip(entering, leaving):
        open_ids.update(added)
        open_ids.difference_update(done)
        counts.append(len(open_ids))
    return counts


def running_union_counts(
    weekly_ids: Sequence[Iterable[Hashable]],
    initial: Iterable[Hashable] = (),
) -> List[int]:
    """Cumulative number of distinct ids seen up to and including each week."""
    seen: Set[Hashable] = set(initial)
    counts: List[int] = []
    for ids in weekly_ids:
        seen.update(ids)
        counts.append(len(seen))
    return counts


def running_state_counts(
    weekly_transitions: Sequence[Mapping[str, Iterable[Hashable]]],
    states: Sequence[str],
    initial: Optional[Mapping[str, Iterable[Hashable]]] = None,
) -> List[Tuple[Dict[str, int], int]]:
    """
    Track ids moving between mutually exclusive states week by week.

    Each week maps state -> ids observed in that state. An id observed in a
    state leaves every other state. Returns, per week, the count per state
    and the number of distinct ids ever seen.
    """
    members: Dict[str, Set[Hashable]] = {state: set() for state in states}
    seen: Set[Hashable] = set()

    def _apply(transitions: Mapping[str, Iterable[Hashable]]) -> None:
        for state in states:
            for item in transitions.get(state, ()):
                seen.add(item)
                for other in states:
                    if other != state:
                        members[other].discard(item)
                members[state].add(item)

    if initial:
        _apply(initial)

    result: List[Tuple[Dict[str, int], int]] = []
    for transitions in weekly_transitions:
        _apply(transitions)
        result.append(({state: len(members[state]) for state in states}, len(seen)))
    return result
