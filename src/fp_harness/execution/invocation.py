"""
fp-harness: invocation conventions

File: src/fp_harness/execution/invocation.py

Purpose
- Decide how fixture inputs reach an external VM/program. Conventions are
  looked up by the ``invocation`` name a registry entry declares.

Program conventions (build the host command)
- Every convention runs the program's ``host`` artifact; the names and the
  artifacts they need are declared in :mod:`fp_harness.registry.invocations`.
- ``env``: run the ``host`` artifact with no arguments; inputs are exported
  as ``FPT_*`` environment variables.
- ``op-program``: op-program flag style (``--l1.head``, ``--l2.claim`` ...).
- ``kona``: kona-host flag style (``--l1-head``, ``--l2-claim`` ...).

Platform runners (wrap the host command)
- ``native``: run the host command directly.
- ``cannon`` / ``asterisc``: ``<vm> load-elf`` the program's ``client``
  artifact into ``state.json``, then ``<vm> run ... -- <host --server>``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Protocol

from fp_harness.execution.process import CommandSpec
from fp_harness.fixtures.model import FixtureInputs


class InvocationError(ValueError):
    """Raised when a job cannot be turned into a command line."""


@dataclass(frozen=True, slots=True)
class RpcSources:
    """Live endpoints used instead of a witness database (fixture generation)."""

    l1: str
    l1_beacon: str
    l2: str


@dataclass(frozen=True, slots=True)
class HostInputs:
    """Everything a program convention needs besides its own artifacts."""

    fixture_name: str
    inputs: FixtureInputs
    datadir: Path
    rollup_config: Path | None = None
    genesis: Path | None = None
    rpc: RpcSources | None = None


@dataclass(frozen=True, slots=True)
class HostCommand:
    argv: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Commands for one job: preparation steps, then the command whose exit status is judged."""

    main: CommandSpec
    prepare: tuple[CommandSpec, ...] = ()


class ProgramConvention(Protocol):
    name: str

    def host_command(
        self, artifacts: Mapping[str, Path], inputs: HostInputs, *, server_mode: bool
    ) -> HostCommand: ...


class PlatformRunner(Protocol):
    name: str

    def plan(
        self,
        platform_artifacts: Mapping[str, Path],
        program_artifacts: Mapping[str, Path],
        program: ProgramConvention,
        inputs: HostInputs,
        workdir: Path,
    ) -> ExecutionPlan: ...


def _host_artifact(artifacts: Mapping[str, Path]) -> Path:
    try:
        return artifacts["host"]
    except KeyError:
        raise InvocationError("program declares no 'host' artifact") from None


class EnvConvention:
    """Inputs are passed through ``FPT_*`` environment variables."""

    name = "env"

    def host_command(
        self, artifacts: Mapping[str, Path], inputs: HostInputs, *, server_mode: bool
    ) -> HostCommand:
        env = {
            "FPT_FIXTURE_NAME": inputs.fixture_name,
            "FPT_L1_HEAD": inputs.inputs.l1_head,
            "FPT_L2_HEAD": inputs.inputs.l2_head,
            "FPT_L2_OUTPUT_ROOT": inputs.inputs.l2_output_root,
            "FPT_L2_CLAIM": inputs.inputs.l2_claim,
            "FPT_L2_BLOCK_NUMBER": str(inputs.inputs.l2_block_number),
            "FPT_L2_CHAIN_ID": str(inputs.inputs.l2_chain_id),
            "FPT_DATADIR": str(inputs.datadir),
            "FPT_SERVER_MODE": "1" if server_mode else "0",
        }
        if inputs.rollup_config is not None:
            env["FPT_ROLLUP_CONFIG"] = str(inputs.rollup_config)
        if inputs.genesis is not None:
            env["FPT_L2_GENESIS"] = str(inputs.genesis)
        if inputs.rpc is not None:
            env.update(
                {
                    "FPT_L1_RPC": inputs.rpc.l1,
                    "FPT_L1_BEACON_RPC": inputs.rpc.l1_beacon,
                    "FPT_L2_RPC": inputs.rpc.l2,
                }
            )
        return HostCommand(argv=(str(_host_artifact(artifacts)),), env=env)


class OpProgramConvention:
    name = "op-program"

    def host_command(
        self, artifacts: Mapping[str, Path], inputs: HostInputs, *, server_mode: bool
    ) -> HostCommand:
        fixture = inputs.inputs
        argv = [
            str(_host_artifact(artifacts)),
            "--l1.head", fixture.l1_head,
            "--l2.head", fixture.l2_head,
            "--l2.outputroot", fixture.l2_output_root,
            "--l2.claim", fixture.l2_claim,
            "--l2.blocknumber", str(fixture.l2_block_number),
        ]  # fmt: skip
        if inputs.rollup_config is not None:
            argv += ["--rollup.config", str(inputs.rollup_config)]
        else:
            argv += ["--l2.chainid", str(fixture.l2_chain_id)]
        if inputs.genesis is not None:
            argv += ["--l2.genesis", str(inputs.genesis)]
        if server_mode:
            argv.append("--server")
        if inputs.rpc is not None:
            argv += ["--l1", inputs.rpc.l1, "--l1.beacon", inputs.rpc.l1_beacon, "--l2", inputs.rpc.l2]
        argv += ["--datadir", str(inputs.datadir)]
        return HostCommand(argv=tuple(argv))


class KonaConvention:
    name = "kona"

    def host_command(
        self, artifacts: Mapping[str, Path], inputs: HostInputs, *, server_mode: bool
    ) -> HostCommand:
        fixture = inputs.inputs
        argv = [
            str(_host_artifact(artifacts)),
            "--l1-head", fixture.l1_head,
            "--l2-head", fixture.l2_head,
            "--l2-output-root", fixture.l2_output_root,
            "--l2-claim", fixture.l2_claim,
            "--l2-block-number", str(fixture.l2_block_number),
            "--l2-chain-id", str(fixture.l2_chain_id),
        ]  # fmt: skip
        if inputs.rollup_config is not None:
            argv += ["--rollup-config-path", str(inputs.rollup_config)]
        if server_mode:
            argv.append("--server")
        elif "client" in artifacts:
            argv += ["--exec", str(artifacts["client"])]
        if inputs.rpc is not None:
            argv += [
                "--l1-node-address", inputs.rpc.l1,
                "--l1-beacon-address", inputs.rpc.l1_beacon,
                "--l2-node-address", inputs.rpc.l2,
            ]  # fmt: skip
        argv += ["--data-dir", str(inputs.datadir)]
        return HostCommand(argv=tuple(argv))


class NativeRunner:
    """Runs the program host directly on the machine."""

    name = "native"

    def plan(
        self,
        platform_artifacts: Mapping[str, Path],
        program_artifacts: Mapping[str, Path],
        program: ProgramConvention,
        inputs: HostInputs,
        workdir: Path,
    ) -> ExecutionPlan:
        host = program.host_command(program_artifacts, inputs, server_mode=False)
        return ExecutionPlan(main=CommandSpec(argv=host.argv, cwd=str(workdir), env=host.env))


@dataclass(frozen=True, slots=True)
class ElfVmRunner:
    """Cannon-style VM: load the client ELF into a state file, then run it with the host."""

    name: str

    def plan(
        self,
        platform_artifacts: Mapping[str, Path],
        program_artifacts: Mapping[str, Path],
        program: ProgramConvention,
        inputs: HostInputs,
        workdir: Path,
    ) -> ExecutionPlan:
        vm = str(platform_artifacts["vm"])
        client = str(program_artifacts["client"])
        state_path = workdir / "state.json"
        load_elf = CommandSpec(
            argv=(vm, "load-elf", "--path", client, "--out", str(state_path)),
            cwd=str(workdir),
        )
        host = program.host_command(program_artifacts, inputs, server_mode=True)
        run = CommandSpec(
            argv=(
                vm, "run",
                "--info-at", "%10000000",
                "--proof-at", "never",
                "--input", str(state_path),
                "--", *host.argv,
            ),
            cwd=str(workdir),
            env=host.env,
        )  # fmt: skip
        return ExecutionPlan(main=run, prepare=(load_elf,))


PROGRAM_CONVENTIONS: Final[dict[str, ProgramConvention]] = {
    convention.name: convention
    for convention in (EnvConvention(), OpProgramConvention(), KonaConvention())
}

PLATFORM_RUNNERS: Final[dict[str, PlatformRunner]] = {
    runner.name: runner
    for runner in (NativeRunner(), ElfVmRunner("cannon"), ElfVmRunner("asterisc"))
}


def program_convention(name: str) -> ProgramConvention:
    try:
        return PROGRAM_CONVENTIONS[name]
    except KeyError:
        raise InvocationError(f"unknown program invocation {name!r}") from None


def platform_runner(name: str) -> PlatformRunner:
    try:
        return PLATFORM_RUNNERS[name]
    except KeyError:
        raise InvocationError(f"unknown platform invocation {name!r}") from None


__all__ = [
    "ElfVmRunner",
    "EnvConvention",
    "ExecutionPlan",
    "HostCommand",
    "HostInputs",
    "InvocationError",
    "KonaConvention",
    "NativeRunner",
    "OpProgramConvention",
    "PLATFORM_RUNNERS",
    "PROGRAM_CONVENTIONS",
    "PlatformRunner",
    "ProgramConvention",
    "RpcSources",
    "platform_runner",
    "program_convention",
]
