"""
fp-harness: unit tests for job partitioning

File: tests/unit/matrix/test_partition.py

Purpose
- Validate that shards are exact, disjoint, deterministic and balanced.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fp_harness.matrix.partition import InvalidPartition, parse_partition, partition


def test_round_robin_assignment() -> None:
    jobs = list(range(7))

    assert partition(jobs, 1, 3) == (0, 3, 6)
    assert partition(jobs, 2, 3) == (1, 4)
    assert partition(jobs, 3, 3) == (2, 5)


def test_more_shards_than_jobs_leaves_empty_shards() -> None:
    assert partition(["a", "b"], 4, 4) == ()


@pytest.mark.parametrize(("index", "total"), [(0, 3), (4, 3), (1, 0), (-1, 2)])
def test_out_of_range_partition_is_rejected(index: int, total: int) -> None:
    with pytest.raises(InvalidPartition):
        partition([1, 2, 3], index, total)


def test_parse_partition_accepts_whitespace() -> None:
    assert parse_partition("2/5") == (2, 5)
    assert parse_partition(" 1 / 1 ") == (1, 1)


@pytest.mark.parametrize("raw", ["", "1", "1/", "a/b", "0/2", "3/2", "1/2/3", "-1/2"])
def test_parse_partition_rejects_malformed_text(raw: str) -> None:
    with pytest.raises(InvalidPartition):
        parse_partition(raw)


@given(
    jobs=st.lists(st.integers(), max_size=60),
    total=st.integers(min_value=1, max_value=12),
)
@settings(max_examples=80, derandomize=True, deadline=None)
def test_union_of_shards_is_exactly_the_job_list(jobs: list[int], total: int) -> None:
    shards = [partition(jobs, index, total) for index in range(1, total + 1)]
    positions = list(range(len(jobs)))
    position_shards = [partition(positions, index, total) for index in range(1, total + 1)]

    assert sorted(p for shard in position_shards for p in shard) == positions
    assert sorted(item for shard in shards for item in shard) == sorted(jobs)
    assert sum(len(shard) for shard in shards) == len(jobs)
    sizes = [len(shard) for shard in shards]
    assert max(sizes) - min(sizes) <= 1


@given(
    jobs=st.lists(st.text(max_size=4), max_size=30),
    total=st.integers(min_value=1, max_value=6),
    data=st.data(),
)
@settings(max_examples=50, derandomize=True, deadline=None)
def test_partition_is_deterministic(jobs: list[str], total: int, data: st.DataObject) -> None:
    index = data.draw(st.integers(min_value=1, max_value=total))

    assert partition(jobs, index, total) == partition(list(jobs), index, total)
