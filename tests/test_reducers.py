from datetime import datetime, timezone

from metrics.intervals import create_intervals
from metrics.reducers import (
    CompositeReducer,
    CountReducer,
    LastReducer,
    SetReducer,
    SumReducer,
    reduce_series,
)
from metrics.schemas import WeekValue

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 1, 22, tzinfo=timezone.utc)


def test_count_reducer_with_predicate():
    reducer = CountReducer(lambda e: e["result"] == "succeeded")
    events = [{"result": "succeeded"}, {"result": "failed"}, {"result": "succeeded"}]

    assert CountReducer().reduce(events) == 3
    assert reducer.reduce(events) == 2
    assert reducer.reduce([]) == 0


def test_sum_reducer_skips_missing_values():
    assert SumReducer("n").reduce([{"n": 2}, {"n": None}, {}, {"n": 5}]) == 7


def test_set_reducer_unions_scalars_and_lists():
    events = [{"spec": "a"}, {"spec": ["b", "c", None]}, {"spec": "a"}, {}]

    assert SetReducer("spec").reduce(events) == frozenset({"a", "b", "c"})


def test_last_reducer_single_field_and_multiple_fields():
    events = [{"v": 1, "w": "x"}, {"v": 2, "w": "y"}]

    assert LastReducer("v").reduce(events) == 2
    assert LastReducer(("v", "w")).reduce(events) == {"v": 2, "w": "y"}
    assert LastReducer("v").reduce([]) is None
    assert LastReducer(("v",)).reduce([]) == {}


def test_composite_reducer_runs_all_reducers():
    reducer = CompositeReducer(total=CountReducer(), tests=SumReducer("n"))

    assert reducer.reduce([{"n": 3}, {"n": 4}]) == {"total": 2, "tests": 7}
    assert reducer.empty() == {"total": 0, "tests": 0}


def test_reduce_series_is_sparse_and_ordered():
    intervals = create_intervals(START, END)
    events = [
        {"id": 2, "def": 1, "t": datetime(2024, 1, 16, tzinfo=timezone.utc), "n": 30},
        {"id": 1, "def": 1, "t": datetime(2024, 1, 2, tzinfo=timezone.utc), "n": 10},
        {"id": 3, "def": 1, "t": datetime(2024, 1, 3, tzinfo=timezone.utc), "n": 11},
        {"id": 4, "def": 2, "t": datetime(2024, 1, 9, tzinfo=timezone.utc), "n": 20},
    ]

    series = reduce_series(
        events,
        start_date=START,
        intervals=intervals,
        key=lambda e: e["def"],
        reducer=LastReducer("n"),
        time_field="t",
    )

    assert series[1].entries == (WeekValue(0, 11), WeekValue(2, 30))
    assert series[2].entries == (WeekValue(1, 20),)


def test_reduce_series_finalize_and_empty_input():
    intervals = create_intervals(START, END)
    events = [{"id": 1, "t": datetime(2024, 1, 2, tzinfo=timezone.utc)}]

    series = reduce_series(
        events,
        start_date=START,
        intervals=intervals,
        key=lambda e: "all",
        reducer=CountReducer(),
        time_field="t",
        finalize=lambda n: n * 100,
    )

    assert series["all"].values() == [100]
    assert (
        reduce_series(
            [],
            start_date=START,
            intervals=intervals,
            key=lambda e: "all",
            reducer=CountReducer(),
            time_field="t",
        )
        == {}
    )
