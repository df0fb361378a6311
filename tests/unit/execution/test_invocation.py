"""
fp-harness: unit tests for invocation conventions

File: tests/unit/execution/test_invocation.py

Purpose
- Validate the command lines each program convention and platform runner
  produce, and registry-level validation of declared conventions.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fp_harness.execution.invocation import (
    ElfVmRunner,
    EnvConvention,
    HostInputs,
    InvocationError,
    PLATFORM_RUNNERS,
    PROGRAM_CONVENTIONS,
    KonaConvention,
    NativeRunner,
    OpProgramConvention,
    ProgramConvention,
    RpcSources,
    platform_runner,
    program_convention,
)
from fp_harness.fixtures.model import FixtureInputs
from fp_harness.registry.invocations import PLATFORM_INVOCATIONS, PROGRAM_INVOCATIONS

_L1 = "0x" + "01" * 32
_L2 = "0x" + "02" * 32
_ROOT = "0x" + "03" * 32
_CLAIM = "0x" + "04" * 32


def _inputs(tmp_path: Path, **overrides: object) -> HostInputs:
    fields: dict[str, object] = {
        "fixture_name": "sepolia-1",
        "inputs": FixtureInputs(
            l1_head=_L1,
            l2_head=_L2,
            l2_output_root=_ROOT,
            l2_claim=_CLAIM,
            l2_block_number=1000,
            l2_chain_id=11155420,
        ),
        "datadir": tmp_path / "datadir",
    }
    fields.update(overrides)
    return HostInputs(**fields)  # type: ignore[arg-type]


def _flag(argv: tuple[str, ...], name: str) -> str:
    return argv[argv.index(name) + 1]


def test_env_convention_exports_inputs(tmp_path: Path) -> None:
    host = tmp_path / "host"
    command = EnvConvention().host_command({"host": host}, _inputs(tmp_path), server_mode=False)

    assert command.argv == (str(host),)
    assert command.env["FPT_L1_HEAD"] == _L1
    assert command.env["FPT_L2_CLAIM"] == _CLAIM
    assert command.env["FPT_L2_BLOCK_NUMBER"] == "1000"
    assert command.env["FPT_L2_CHAIN_ID"] == "11155420"
    assert command.env["FPT_DATADIR"] == str(tmp_path / "datadir")
    assert command.env["FPT_SERVER_MODE"] == "0"
    assert "FPT_ROLLUP_CONFIG" not in command.env


def test_op_program_flags_without_rollup_config_use_chain_id(tmp_path: Path) -> None:
    command = OpProgramConvention().host_command(
        {"host": tmp_path / "op-program", "client": tmp_path / "client.elf"},
        _inputs(tmp_path),
        server_mode=False,
    )

    argv = command.argv
    assert argv[0] == str(tmp_path / "op-program")
    assert _flag(argv, "--l1.head") == _L1
    assert _flag(argv, "--l2.head") == _L2
    assert _flag(argv, "--l2.outputroot") == _ROOT
    assert _flag(argv, "--l2.claim") == _CLAIM
    assert _flag(argv, "--l2.blocknumber") == "1000"
    assert _flag(argv, "--l2.chainid") == "11155420"
    assert _flag(argv, "--datadir") == str(tmp_path / "datadir")
    assert "--server" not in argv
    assert command.env == {}


def test_op_program_prefers_rollup_config_and_genesis(tmp_path: Path) -> None:
    inputs = _inputs(
        tmp_path, rollup_config=tmp_path / "rollup.json", genesis=tmp_path / "genesis.json"
    )
    argv = OpProgramConvention().host_command(
        {"host": tmp_path / "op-program"}, inputs, server_mode=True
    ).argv

    assert "--l2.chainid" not in argv
    assert _flag(argv, "--rollup.config") == str(tmp_path / "rollup.json")
    assert _flag(argv, "--l2.genesis") == str(tmp_path / "genesis.json")
    assert "--server" in argv


def test_op_program_online_mode_passes_endpoints(tmp_path: Path) -> None:
    rpc = RpcSources(l1="http://l1", l1_beacon="http://beacon", l2="http://l2")
    argv = OpProgramConvention().host_command(
        {"host": tmp_path / "op-program"}, _inputs(tmp_path, rpc=rpc), server_mode=False
    ).argv

    assert (_flag(argv, "--l1"), _flag(argv, "--l1.beacon"), _flag(argv, "--l2")) == (
        "http://l1",
        "http://beacon",
        "http://l2",
    )


def test_kona_flags_and_exec_client_when_native(tmp_path: Path) -> None:
    artifacts = {"host": tmp_path / "kona-host", "client": tmp_path / "kona-client"}
    native = KonaConvention().host_command(artifacts, _inputs(tmp_path), server_mode=False).argv
    server = KonaConvention().host_command(artifacts, _inputs(tmp_path), server_mode=True).argv

    assert _flag(native, "--l1-head") == _L1
    assert _flag(native, "--l2-output-root") == _ROOT
    assert _flag(native, "--l2-chain-id") == "11155420"
    assert _flag(native, "--data-dir") == str(tmp_path / "datadir")
    assert _flag(native, "--exec") == str(tmp_path / "kona-client")
    assert "--server" in server
    assert "--exec" not in server


@pytest.mark.parametrize("convention", [EnvConvention(), OpProgramConvention(), KonaConvention()])
def test_host_artifact_is_never_guessed(tmp_path: Path, convention: ProgramConvention) -> None:
    with pytest.raises(InvocationError, match="host"):
        convention.host_command({"vm": tmp_path / "cannon"}, _inputs(tmp_path), server_mode=False)


def test_native_runner_runs_host_in_workdir(tmp_path: Path) -> None:
    plan = NativeRunner().plan(
        {}, {"host": tmp_path / "host"}, EnvConvention(), _inputs(tmp_path), tmp_path / "work"
    )

    assert plan.prepare == ()
    assert plan.main.argv == (str(tmp_path / "host"),)
    assert plan.main.cwd == str(tmp_path / "work")
    assert plan.main.env["FPT_SERVER_MODE"] == "0"


def test_elf_vm_runner_loads_state_then_runs_host_in_server_mode(tmp_path: Path) -> None:
    workdir = tmp_path / "work"
    plan = ElfVmRunner("cannon").plan(
        {"vm": tmp_path / "cannon"},
        {"host": tmp_path / "op-program", "client": tmp_path / "client.elf"},
        OpProgramConvention(),
        _inputs(tmp_path),
        workdir,
    )

    (load_elf,) = plan.prepare
    assert load_elf.argv == (
        str(tmp_path / "cannon"),
        "load-elf",
        "--path",
        str(tmp_path / "client.elf"),
        "--out",
        str(workdir / "state.json"),
    )
    argv = plan.main.argv
    assert argv[:2] == (str(tmp_path / "cannon"), "run")
    assert _flag(argv, "--input") == str(workdir / "state.json")
    host_part = argv[argv.index("--") + 1 :]
    assert host_part[0] == str(tmp_path / "op-program")
    assert "--server" in host_part


def test_lookup_of_unknown_conventions_raises() -> None:
    assert program_convention("kona").name == "kona"
    assert platform_runner("asterisc").name == "asterisc"
    with pytest.raises(InvocationError, match="program invocation"):
        program_convention("zkvm")
    with pytest.raises(InvocationError, match="platform invocation"):
        platform_runner("sp1")


def test_every_declarable_invocation_has_an_implementation() -> None:
    assert set(PROGRAM_CONVENTIONS) == set(PROGRAM_INVOCATIONS)
    assert set(PLATFORM_RUNNERS) == set(PLATFORM_INVOCATIONS)
