"""
fp-harness: unit tests for fixture generation

File: tests/unit/fixtures/test_fixture_generator.py

Purpose
- Validate how missing inputs are derived from chain endpoints, that
  explicit values skip RPC, and that generation refuses to clobber fixtures.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fp_harness.fixtures.generator import FixtureGenerator, GenerateRequest, GenerationError
from fp_harness.fixtures.rpc import OutputAtBlock
from fp_harness.fixtures.store import FixtureStore


def _h(byte: int) -> str:
    return "0x" + f"{byte:02x}" * 32


class FakeChain:
    """Pretends to be three endpoints keyed by URL."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object]] = []
        self.outputs = {
            99: OutputAtBlock(output_root=_h(0x99), l1_origin_number=4000),
            100: OutputAtBlock(output_root=_h(0x10), l1_origin_number=4010),
        }
        self.l2_hashes = {99: _h(0x2A)}
        self.l1_hashes = {4035: _h(0x1B)}

    def factory(self, url: str) -> FakeClient:
        return FakeClient(self, url)


class FakeClient:
    def __init__(self, chain: FakeChain, url: str) -> None:
        self.chain = chain
        self.url = url

    def output_at_block(self, number: int) -> OutputAtBlock:
        self.chain.calls.append((self.url, "output_at_block", number))
        return self.chain.outputs[number]

    def block_hash(self, number: int) -> str:
        self.chain.calls.append((self.url, "block_hash", number))
        table = self.chain.l1_hashes if self.url == "http://l1" else self.chain.l2_hashes
        return table[number]

    def chain_id(self) -> int:
        self.chain.calls.append((self.url, "chain_id", None))
        return 11155420


def _request(**overrides: object) -> GenerateRequest:
    fields: dict[str, object] = {
        "name": "sepolia-100",
        "l2_block": 100,
        "l1_rpc": "http://l1",
        "l2_node_rpc": "http://node",
        "l2_rpc": "http://l2",
    }
    fields.update(overrides)
    return GenerateRequest(**fields)  # type: ignore[arg-type]


def _generator(tmp_path: Path, chain: FakeChain) -> FixtureGenerator:
    return FixtureGenerator(FixtureStore(tmp_path / "fixtures"), rpc_factory=chain.factory)  # type: ignore[arg-type]


def test_all_inputs_are_derived_from_endpoints(tmp_path: Path) -> None:
    chain = FakeChain()

    fixture = _generator(tmp_path, chain).generate(_request())

    inputs = fixture.inputs
    assert inputs.l2_claim == _h(0x10)
    assert inputs.l2_output_root == _h(0x99)
    assert inputs.l2_head == _h(0x2A)
    assert inputs.l2_chain_id == 11155420
    assert inputs.l1_head == _h(0x1B)
    assert inputs.l2_block_number == 100
    assert fixture.expected_status == 0
    assert (tmp_path / "fixtures" / "sepolia-100" / "fixture.yaml").is_file()


def test_disputed_output_is_fetched_once(tmp_path: Path) -> None:
    chain = FakeChain()

    _generator(tmp_path, chain).generate(_request())

    node_calls = [call for call in chain.calls if call[0] == "http://node"]
    assert node_calls == [
        ("http://node", "output_at_block", 100),
        ("http://node", "output_at_block", 99),
    ]
    assert ("http://l1", "block_hash", 4035) in chain.calls


def test_explicit_values_skip_rpc(tmp_path: Path) -> None:
    chain = FakeChain()
    request = _request(
        l1_rpc=None,
        l2_node_rpc=None,
        l2_rpc=None,
        l1_head=_h(1),
        l2_head=_h(2),
        l2_output_root=_h(3),
        l2_claim=_h(4),
        l2_chain_id=10,
        expected_status=1,
    )

    fixture = _generator(tmp_path, chain).generate(request)

    assert chain.calls == []
    assert fixture.inputs.l1_head == _h(1)
    assert fixture.expected_status == 1


def test_missing_endpoint_names_the_flag(tmp_path: Path) -> None:
    request = _request(l2_node_rpc=None, l2_output_root=_h(3))

    with pytest.raises(GenerationError, match=r"--l2-node-rpc \(L2_NODE_RPC\) is required to derive the l2 claim"):
        _generator(tmp_path, FakeChain()).generate(request)


def test_block_zero_has_no_parent(tmp_path: Path) -> None:
    request = _request(l2_block=0, l2_claim=_h(4))

    with pytest.raises(GenerationError, match="block 0"):
        _generator(tmp_path, FakeChain()).gather_inputs(request)


def test_existing_fixture_requires_overwrite(tmp_path: Path) -> None:
    chain = FakeChain()
    generator = _generator(tmp_path, chain)
    generator.generate(_request())

    with pytest.raises(GenerationError, match="--overwrite"):
        generator.generate(_request())

    replaced = generator.generate(_request(overwrite=True, expected_status=1))
    assert replaced.expected_status == 1


def test_missing_auxiliary_files_fail_before_any_rpc(tmp_path: Path) -> None:
    chain = FakeChain()

    with pytest.raises(GenerationError, match="rollup config file not found"):
        _generator(tmp_path, chain).generate(_request(rollup_config=tmp_path / "nope.json"))
    with pytest.raises(GenerationError, match="witness database not found"):
        _generator(tmp_path, chain).generate(_request(witness_dir=tmp_path / "nope"))

    assert chain.calls == []


def test_invalid_rpc_value_is_reported(tmp_path: Path) -> None:
    chain = FakeChain()
    chain.l2_hashes[99] = "0xdeadbeef"

    with pytest.raises(GenerationError, match="derived inputs are invalid"):
        _generator(tmp_path, chain).generate(_request())
    assert FixtureStore(tmp_path / "fixtures").names() == ()


def test_auxiliary_files_are_stored_with_fixture(tmp_path: Path) -> None:
    rollup = tmp_path / "rollup.json"
    rollup.write_text("{}", encoding="utf-8")
    genesis = tmp_path / "genesis.json"
    genesis.write_text("{}", encoding="utf-8")

    fixture = _generator(tmp_path, FakeChain()).generate(_request(rollup_config=rollup, genesis=genesis))

    assert fixture.rollup_config == "rollup.json"
    assert fixture.genesis == "genesis.json.gz"
