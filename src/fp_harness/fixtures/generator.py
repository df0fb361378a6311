"""
fp-harness: fixture generator

File: src/fp_harness/fixtures/generator.py

Purpose
- Turn a generation request (explicit values plus RPC endpoints) into a
  persisted :class:`TestFixture`.

Derivation rules for values not given explicitly
- l2_claim       = optimism_outputAtBlock(l2_block).outputRoot       (L2 node)
- l2_output_root = optimism_outputAtBlock(l2_block - 1).outputRoot   (L2 node)
- l2_head        = hash of block l2_block - 1                        (L2 execution)
- l2_chain_id    = eth_chainId                                       (L2 execution)
- l1_head        = hash of L1 block l1origin(l2_block) + 25          (L1)

Explicit values always win; an endpoint is only required when a value that
depends on it has to be derived.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from fp_harness.constants import L1_HEAD_CONFIRMATION_DEPTH
from fp_harness.fixtures.model import FixtureFormatError, FixtureInputs, TestFixture
from fp_harness.fixtures.rpc import JsonRpcClient, OutputAtBlock
from fp_harness.fixtures.store import FixtureError, FixtureStore
from fp_harness.observability.logging import redact_text

logger = logging.getLogger(__name__)

RpcFactory = Callable[[str], JsonRpcClient]


class GenerationError(RuntimeError):
    """Raised when a fixture cannot be derived or persisted."""


@dataclass(frozen=True, slots=True)
class GenerateRequest:
    name: str
    l2_block: int
    l1_rpc: str | None = None
    l1_beacon_rpc: str | None = None
    l2_node_rpc: str | None = None
    l2_rpc: str | None = None
    l1_head: str | None = None
    l2_head: str | None = None
    l2_output_root: str | None = None
    l2_claim: str | None = None
    l2_chain_id: int | None = None
    rollup_config: Path | None = None
    genesis: Path | None = None
    witness_dir: Path | None = None
    expected_status: int = 0
    overwrite: bool = False


class FixtureGenerator:
    def __init__(self, store: FixtureStore, *, rpc_factory: RpcFactory = JsonRpcClient) -> None:
        self._store = store
        self._rpc_factory = rpc_factory

    def generate(self, request: GenerateRequest) -> TestFixture:
        if self._store.exists(request.name) and not request.overwrite:
            raise GenerationError(
                f"fixture {request.name!r} already exists in {self._store.root}; pass --overwrite to replace it"
            )
        for label, path in (
            ("rollup config", request.rollup_config),
            ("genesis", request.genesis),
        ):
            if path is not None and not path.is_file():
                raise GenerationError(f"{label} file not found: {path}")
        if request.witness_dir is not None and not request.witness_dir.exists():
            raise GenerationError(f"witness database not found: {request.witness_dir}")

        inputs = self.gather_inputs(request)
        try:
            fixture = TestFixture(
                name=request.name,
                inputs=inputs,
                expected_status=request.expected_status,
            )
            stored = self._store.save(
                fixture,
                rollup_config=request.rollup_config,
                genesis=request.genesis,
                witness_db=request.witness_dir,
                overwrite=request.overwrite,
            )
        except (FixtureError, FixtureFormatError) as exc:
            raise GenerationError(str(exc)) from exc

        logger.info(
            "generated fixture %s for L2 block %d (expected status %d)",
            stored.name,
            inputs.l2_block_number,
            stored.expected_status,
        )
        return stored

    def gather_inputs(self, request: GenerateRequest) -> FixtureInputs:
        block = request.l2_block
        if block < 0:
            raise GenerationError(f"l2 block must be >= 0, got {block}")

        node = _Lazy(self._rpc_factory, request.l2_node_rpc, "--l2-node-rpc (L2_NODE_RPC)")
        l2 = _Lazy(self._rpc_factory, request.l2_rpc, "--l2-rpc (L2_RPC)")
        l1 = _Lazy(self._rpc_factory, request.l1_rpc, "--l1-rpc (L1_RPC)")
        disputed: OutputAtBlock | None = None

        def disputed_output() -> OutputAtBlock:
            nonlocal disputed
            if disputed is None:
                disputed = node.get("l2 claim").output_at_block(block)
            return disputed

        l2_claim = request.l2_claim
        if l2_claim is None:
            logger.info("fetching L2 claim at block %d", block)
            l2_claim = disputed_output().output_root

        l2_output_root = request.l2_output_root
        if l2_output_root is None:
            _require_parent(block, "l2 output root")
            logger.info("fetching starting L2 output root at block %d", block - 1)
            l2_output_root = node.get("l2 output root").output_at_block(block - 1).output_root

        l2_head = request.l2_head
        if l2_head is None:
            _require_parent(block, "l2 head")
            logger.info("fetching L2 head at block %d", block - 1)
            l2_head = l2.get("l2 head").block_hash(block - 1)

        l2_chain_id = request.l2_chain_id
        if l2_chain_id is None:
            logger.info("fetching L2 chain id")
            l2_chain_id = l2.get("l2 chain id").chain_id()

        l1_head = request.l1_head
        if l1_head is None:
            origin = disputed_output().l1_origin_number
            target = origin + L1_HEAD_CONFIRMATION_DEPTH
            logger.info("fetching L1 head at block %d (l1 origin %d)", target, origin)
            l1_head = l1.get("l1 head").block_hash(target)

        try:
            return FixtureInputs(
                l1_head=l1_head,
                l2_head=l2_head,
                l2_output_root=l2_output_root,
                l2_claim=l2_claim,
                l2_block_number=block,
                l2_chain_id=l2_chain_id,
            )
        except FixtureFormatError as exc:
            raise GenerationError(f"derived inputs are invalid: {exc}") from exc


class _Lazy:
    """Creates the RPC client on first use so unused endpoints stay optional."""

    def __init__(self, factory: RpcFactory, url: str | None, flag: str) -> None:
        self._factory = factory
        self._url = url
        self._flag = flag
        self._client: JsonRpcClient | None = None

    def get(self, purpose: str) -> JsonRpcClient:
        if self._client is None:
            if not self._url:
                raise GenerationError(f"{self._flag} is required to derive the {purpose}")
            logger.debug("connecting to %s", redact_text(self._url))
            self._client = self._factory(self._url)
        return self._client


def _require_parent(block: int, purpose: str) -> None:
    if block < 1:
        raise GenerationError(f"cannot derive the {purpose} for block 0: it has no parent block")


__all__ = ["FixtureGenerator", "GenerateRequest", "GenerationError", "RpcFactory"]
