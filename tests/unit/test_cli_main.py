"""
fp-harness: unit tests for the CLI router and exit-code contract

File: tests/unit/test_cli_main.py

Purpose
- Validate in-process command routing, JSON output, and mapping of typed
  failures onto process exit codes.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fp_harness.config.loader import ConfigLoadError
from fp_harness.fixtures.generator import GenerationError
from fp_harness.fixtures.store import FixtureStore
from fp_harness.main import ExitCode, _route_exception, cli_entrypoint
from fp_harness.ui.cli import _split_names, build_parser

_HASH = "0x" + "7e" * 32

REGISTRY = """
[platform.native]
default = true

[platform.cannon]
default = true
invocation = 'cannon'
build.repo = 'ethereum-optimism/optimism'
build.rev = 'cannon/v1.4.0'
build.workdir = 'cannon'
build.cmd = 'make cannon'
build.artifacts.vm = 'bin/cannon'

[program.op-program]
default = true
invocation = 'op-program'
platform-compat = ['native', 'cannon']
build.repo = 'ethereum-optimism/optimism'
build.rev = 'op-program/v1.3.1'
build.workdir = 'op-program'
build.cmd = 'make op-program'
build.artifacts.host = 'bin/op-program'
build.artifacts.client = 'bin/op-program-client.elf'
"""


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NO_COLOR", "1")
    for name in ("L1_RPC", "L1_BEACON_RPC", "L2_NODE_RPC", "L2_RPC", "L2_BLOCK", "L2_CLAIM"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "registry.toml").write_text(REGISTRY, encoding="utf-8")
    return tmp_path


def _generate_args(name: str, *extra: str) -> list[str]:
    return [
        "generate",
        "--name", name,
        "--l2-block", "12",
        "--l1-head", _HASH,
        "--l2-head", _HASH,
        "--l2-output-root", _HASH,
        "--l2-claim", _HASH,
        "--l2-chain-id", "901",
        *extra,
    ]  # fmt: skip


def test_matrix_json(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["matrix", "--json"]) == ExitCode.SUCCESS

    payload = json.loads(capsys.readouterr().out)
    assert payload["platforms"]["cannon"] == {"default": True, "programs": ["op-program"]}
    assert payload["default_programs"] == ["op-program"]


def test_matrix_table(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["matrix"]) == ExitCode.SUCCESS

    out = capsys.readouterr().out
    assert "cannon" in out
    assert "op-program" in out


def test_generate_with_explicit_values_needs_no_endpoints(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint([*_generate_args("devnet-12", "--expected-status", "1"), "--json"])

    assert code == ExitCode.SUCCESS
    payload = json.loads(capsys.readouterr().out)
    assert payload["name"] == "devnet-12"
    assert payload["expected-status"] == 1
    stored = FixtureStore(workspace / "fixtures").load("devnet-12")
    assert stored.inputs.l2_chain_id == 901


def test_generate_reads_block_from_environment(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("L2_BLOCK", "77")
    args = [arg for arg in _generate_args("from-env") if arg not in {"--l2-block", "12"}]

    assert cli_entrypoint(args) == ExitCode.SUCCESS
    assert FixtureStore(workspace / "fixtures").load("from-env").inputs.l2_block_number == 77


def test_generate_without_endpoint_is_generation_error(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(["generate", "--name", "x", "--l2-block", "5"])

    assert code == ExitCode.GENERATION_ERROR
    assert "--l2-node-rpc (L2_NODE_RPC) is required" in capsys.readouterr().err


def test_generate_refuses_to_overwrite(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(_generate_args("dup")) == ExitCode.SUCCESS
    assert cli_entrypoint(_generate_args("dup")) == ExitCode.GENERATION_ERROR
    assert cli_entrypoint(_generate_args("dup", "--overwrite")) == ExitCode.SUCCESS


def test_generate_requires_block(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["generate", "--name", "x"]) == ExitCode.CONFIG_ERROR
    assert "--l2-block" in capsys.readouterr().err


def test_run_list_selects_jobs_without_building(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(_generate_args("alpha")) == ExitCode.SUCCESS
    assert cli_entrypoint(_generate_args("beta")) == ExitCode.SUCCESS
    capsys.readouterr()

    code = cli_entrypoint(
        ["run", "--list", "--json", "--vm", "cannon", "--test", "b*", "--cache-root", "cache"]
    )

    assert code == ExitCode.SUCCESS
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"jobs": [{"platform": "cannon", "program": "op-program", "fixture": "beta"}]}
    assert not (workspace / "cache").exists()


def test_run_list_partition(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    for name in ("a", "b", "c"):
        assert cli_entrypoint(_generate_args(name)) == ExitCode.SUCCESS
    capsys.readouterr()

    shards = []
    for index in (1, 2):
        assert cli_entrypoint(["run", "--list", "--json", "--partition", f"{index}/2"]) == 0
        shards.append(json.loads(capsys.readouterr().out)["jobs"])

    assert [len(shard) for shard in shards] == [3, 3]


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "--list", "--vm", "mips"],
        ["run", "--list", "--partition", "3/2"],
        ["run", "--list", "--registry", "missing.toml"],
        ["matrix", "--config", "absent.toml"],
    ],
)
def test_configuration_problems_exit_with_config_error(
    workspace: Path, argv: list[str], capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli_entrypoint(argv) == ExitCode.CONFIG_ERROR
    assert "error:" in capsys.readouterr().err


def test_invalid_registry_lists_every_issue(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (workspace / "registry.toml").write_text(
        "[platform.native]\n\n[program.p]\nplatform-compat = ['x', 'y']\n", encoding="utf-8"
    )

    assert cli_entrypoint(["matrix"]) == ExitCode.CONFIG_ERROR
    err = capsys.readouterr().err
    assert "nonexistent platform 'x'" in err
    assert "nonexistent platform 'y'" in err


def test_config_command_prints_effective_values(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("FPT_RUNNER_WORKERS", "9")

    assert cli_entrypoint(["config", "--json", "--cache-root", "cache"]) == ExitCode.SUCCESS

    payload = json.loads(capsys.readouterr().out)
    assert payload["runner"]["workers"] == 9
    assert payload["paths"]["cache_root"] == str(workspace.resolve() / "cache")


def test_route_exception_walks_the_cause_chain() -> None:
    try:
        try:
            raise ConfigLoadError("bad")
        except ConfigLoadError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert _route_exception(outer) is ExitCode.CONFIG_ERROR

    assert _route_exception(GenerationError("rpc down")) is ExitCode.GENERATION_ERROR
    assert _route_exception(ValueError("boom")) is ExitCode.INTERNAL_ERROR


def test_split_names_accepts_commas_and_repeats() -> None:
    assert _split_names(["cannon,asterisc", " native ", "cannon"]) == ("cannon", "asterisc", "native")


def test_generate_flags_default_from_given_environment() -> None:
    parser = build_parser({"L2_BLOCK": "5", "L2_RPC": "http://l2"})

    args = parser.parse_args(["generate", "--name", "x"])

    assert args.l2_block == 5
    assert args.l2_rpc == "http://l2"
    assert args.l1_rpc is None
