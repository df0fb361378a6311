"""Test fixtures: value objects and the on-disk store.

The generator lives in :mod:`fp_harness.fixtures.generator` and is imported
from there, since it pulls in the RPC client.
"""

from fp_harness.fixtures.model import FixtureFormatError, FixtureInputs, TestFixture
from fp_harness.fixtures.store import FixtureError, FixtureStore, MaterializedFixture

__all__ = [
    "FixtureError",
    "FixtureFormatError",
    "FixtureInputs",
    "FixtureStore",
    "MaterializedFixture",
    "TestFixture",
]
