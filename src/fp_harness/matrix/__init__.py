"""Job matrix resolution and partitioning."""

from fp_harness.matrix.partition import InvalidPartition, parse_partition, partition
from fp_harness.matrix.resolver import (
    Job,
    MatrixFilterError,
    MatrixFilters,
    compatibility_matrix,
    resolve_jobs,
)

__all__ = [
    "InvalidPartition",
    "Job",
    "MatrixFilterError",
    "MatrixFilters",
    "compatibility_matrix",
    "parse_partition",
    "partition",
    "resolve_jobs",
]
