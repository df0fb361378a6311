"""Command-line interface router for fp-harness (``fpt``)."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Final

from fp_harness.build.cache import ArtifactCache
from fp_harness.build.orchestrator import BuildOrchestrator
from fp_harness.build.source import GitSourceFetcher
from fp_harness.config.loader import dump_effective_config, load_config
from fp_harness.fixtures.generator import FixtureGenerator, GenerateRequest
from fp_harness.fixtures.rpc import DEFAULT_RPC_TIMEOUT_SECONDS, JsonRpcClient
from fp_harness.fixtures.store import FixtureStore
from fp_harness.matrix.partition import parse_partition
from fp_harness.matrix.resolver import MatrixFilters, compatibility_matrix
from fp_harness.observability.logging import (
    LoggingConfig,
    setup_structured_logging,
    shutdown_logging,
)
from fp_harness.pipeline import TestPipeline
from fp_harness.registry.model import Registry
from fp_harness.registry.parser import load_registry
from fp_harness.ui.render import CLIRenderer, create_renderer

# Generation options that can also come from the environment, as (flag, env var).
_GENERATE_ENV_OPTIONS: Final[tuple[tuple[str, str], ...]] = (
    ("--l1-rpc", "L1_RPC"),
    ("--l1-beacon-rpc", "L1_BEACON_RPC"),
    ("--l2-node-rpc", "L2_NODE_RPC"),
    ("--l2-rpc", "L2_RPC"),
    ("--l2-block", "L2_BLOCK"),
    ("--l2-claim", "L2_CLAIM"),
    ("--l2-output-root", "L2_OUTPUT_ROOT"),
    ("--l2-head", "L2_HEAD"),
    ("--l1-head", "L1_HEAD"),
    ("--l2-chain-id", "L2_CHAIN_ID"),
)
_INT_OPTIONS: Final[frozenset[str]] = frozenset({"--l2-block", "--l2-chain-id"})


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser(environ: Mapping[str, str] | None = None) -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    env = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(
        prog="fpt",
        description=(
            "fpt: fault-proof program and VM test harness.\n\n"
            "Common workflows:\n"
            "  fpt generate --name my-test --l2-block 12   Derive a fixture from a devnet\n"
            "  fpt run --vm cannon --partition 1/4         Run one shard of the matrix\n"
            "  fpt matrix                                  Show compatible VM/program pairs\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to fpt TOML config (default: $FPT_CONFIG, else the nearest fpt.toml).",
    )
    common.add_argument("--registry", default=None, help="Registry TOML (overrides paths.registry).")
    common.add_argument(
        "--fixtures-dir", default=None, help="Fixture directory (overrides paths.fixtures_dir)."
    )
    common.add_argument(
        "--cache-root", default=None, help="Build cache root (overrides paths.cache_root)."
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Debug logging and full failure output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # generate ------------------------------------------------------------
    generate_parser = subparsers.add_parser(
        "generate",
        parents=[common],
        help="Create a test fixture from a running chain",
        description=(
            "Derive fixture inputs over JSON-RPC (values passed explicitly are used as-is) "
            "and store the fixture under the fixtures directory."
        ),
    )
    generate_parser.add_argument("--name", required=True, help="Fixture name")
    for flag, env_name in _GENERATE_ENV_OPTIONS:
        generate_parser.add_argument(
            flag,
            default=env.get(env_name) or None,
            type=int if flag in _INT_OPTIONS else str,
            help=f"(env: {env_name})",
        )
    generate_parser.add_argument(
        "--rollup-config", type=Path, default=None, help="rollup.json to copy into the fixture"
    )
    generate_parser.add_argument(
        "--genesis", type=Path, default=None, help="L2 genesis (stored gzip-compressed)"
    )
    generate_parser.add_argument(
        "--witness-dir",
        type=Path,
        default=None,
        help="Witness database directory (or .tar.gz) to archive into the fixture",
    )
    generate_parser.add_argument(
        "--expected-status", type=int, default=0, help="Exit status the program must return"
    )
    generate_parser.add_argument(
        "--rpc-timeout",
        type=float,
        default=DEFAULT_RPC_TIMEOUT_SECONDS,
        help="Per-request JSON-RPC timeout in seconds",
    )
    generate_parser.add_argument(
        "--overwrite", action="store_true", help="Replace an existing fixture of the same name"
    )
    generate_parser.set_defaults(handler=_cmd_generate)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Build and run the VM x program x fixture matrix",
        description="Build everything the selected jobs need, then run them concurrently.",
    )
    run_parser.add_argument("--test", default=None, help="Fixture name glob, e.g. 'reth-*'")
    run_parser.add_argument(
        "--vm",
        action="append",
        default=[],
        help="Platform name(s), comma separated; repeatable",
    )
    run_parser.add_argument(
        "--program",
        action="append",
        default=[],
        help="Program name(s), comma separated; repeatable",
    )
    run_parser.add_argument(
        "--defaults",
        action="store_true",
        help="Only platforms/programs marked default (when not named explicitly)",
    )
    run_parser.add_argument("--partition", default=None, help="Run shard i of n, as 'i/n'")
    run_parser.add_argument("--workers", type=int, default=None, help="Concurrent jobs")
    run_parser.add_argument("--timeout", type=int, default=None, help="Per-job timeout in seconds")
    run_parser.add_argument(
        "--list", action="store_true", help="Print the selected jobs without building or running"
    )
    run_parser.set_defaults(handler=_cmd_run)

    # matrix --------------------------------------------------------------
    matrix_parser = subparsers.add_parser(
        "matrix",
        parents=[common],
        help="Show which programs run on which platforms",
    )
    matrix_parser.set_defaults(handler=_cmd_matrix)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_generate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.l2_block is None:
        raise CLIError("--l2-block (or L2_BLOCK) is required")

    request = GenerateRequest(
        name=args.name,
        l2_block=args.l2_block,
        l1_rpc=args.l1_rpc,
        l1_beacon_rpc=args.l1_beacon_rpc,
        l2_node_rpc=args.l2_node_rpc,
        l2_rpc=args.l2_rpc,
        l1_head=args.l1_head,
        l2_head=args.l2_head,
        l2_output_root=args.l2_output_root,
        l2_claim=args.l2_claim,
        l2_chain_id=args.l2_chain_id,
        rollup_config=args.rollup_config,
        genesis=args.genesis,
        witness_dir=args.witness_dir,
        expected_status=args.expected_status,
        overwrite=args.overwrite,
    )
    store = FixtureStore(config["paths"]["fixtures_dir"])
    generator = FixtureGenerator(
        store, rpc_factory=partial(JsonRpcClient, timeout_seconds=args.rpc_timeout)
    )

    with _logging_session(config, args):
        fixture = generator.generate(request)

    if args.json:
        payload = fixture.to_dict()
        payload["directory"] = str(fixture.directory)
        _emit_json(payload)
    else:
        _get_renderer(args).text(f"stored fixture {fixture.name} in {fixture.directory}")
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        overrides={
            "runner.workers": args.workers,
            "runner.timeout_seconds": args.timeout,
        },
    )
    renderer = _get_renderer(args)
    filters = MatrixFilters(
        name_pattern=args.test,
        platform_names=_split_names(args.vm),
        program_names=_split_names(args.program),
        defaults_only=args.defaults,
    )
    shard = parse_partition(args.partition) if args.partition else None

    with _logging_session(config, args):
        registry = _load_registry(config, renderer, quiet=args.json)
        pipeline = _build_pipeline(config, registry)
        jobs = pipeline.plan(filters, shard)

        if args.list:
            if args.json:
                _emit_json(
                    {
                        "jobs": [
                            {"platform": job.platform, "program": job.program, "fixture": job.fixture}
                            for job in jobs
                        ]
                    }
                )
            else:
                renderer.jobs(jobs)
            return 0

        result = asyncio.run(pipeline.run(jobs))

    if args.json:
        _emit_json(result.to_dict())
    else:
        renderer.build_errors(result.build_errors)
        renderer.outcomes(result.outcomes, result.summary)
    return result.summary.exit_code


def _cmd_matrix(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    renderer = _get_renderer(args)
    with _logging_session(config, args):
        registry = _load_registry(config, renderer, quiet=args.json)

    matrix = compatibility_matrix(registry)
    if args.json:
        _emit_json(
            {
                "platforms": {
                    name: {
                        "default": registry.platform(name).is_default,
                        "programs": list(programs),
                    }
                    for name, programs in matrix.items()
                },
                "default_programs": list(registry.default_programs()),
            }
        )
    else:
        renderer.matrix(registry, matrix)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        print(dump_effective_config(config))
    else:
        print(json.dumps(config, indent=2, sort_keys=True))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(
        no_color=bool(getattr(args, "no_color", False)),
        verbose=bool(getattr(args, "verbose", False)),
    )


def _load_effective_config(
    args: argparse.Namespace,
    *,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    cli_overrides: dict[str, object] = {
        "paths.registry": _absolute(args.registry),
        "paths.fixtures_dir": _absolute(args.fixtures_dir),
        "paths.cache_root": _absolute(args.cache_root),
    }
    if args.verbose:
        cli_overrides["observability.log_level"] = "DEBUG"
    cli_overrides.update(overrides or {})
    return load_config(args.config_path, cli_overrides=cli_overrides)


def _absolute(raw: str | None) -> str | None:
    # CLI paths are relative to the working directory, not the config file.
    if raw is None:
        return None
    return str(Path(raw).expanduser().resolve())


@contextmanager
def _logging_session(config: Mapping[str, Any], args: argparse.Namespace) -> Iterator[None]:
    observability = config["observability"]
    run_id = f"{args.command}-{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{os.getpid()}"
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            level=observability["log_level"],
            fmt=observability["log_format"],
            base_log_dir=config["paths"]["log_dir"] if observability["log_to_file"] else None,
        )
    )
    try:
        yield
    finally:
        shutdown_logging(handle)


def _load_registry(config: Mapping[str, Any], renderer: CLIRenderer, *, quiet: bool) -> Registry:
    registry = load_registry(config["paths"]["registry"])
    if not quiet:
        for warning in registry.warnings:
            renderer.warning(warning)
    return registry


def _build_pipeline(config: Mapping[str, Any], registry: Registry) -> TestPipeline:
    build = config["build"]
    runner = config["runner"]
    orchestrator = BuildOrchestrator(
        ArtifactCache(config["paths"]["cache_root"]),
        fetcher=GitSourceFetcher(remote_template=build["remote_template"]),
        timeout_seconds=build["timeout_seconds"],
        max_parallel=build["max_parallel"],
    )
    return TestPipeline(
        registry,
        FixtureStore(config["paths"]["fixtures_dir"]),
        orchestrator,
        workers=runner["workers"],
        timeout_seconds=runner["timeout_seconds"],
        output_tail_chars=runner["output_tail_chars"],
    )


def _split_names(values: Sequence[str]) -> tuple[str, ...]:
    names: list[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part and part not in names:
                names.append(part)
    return tuple(names)


__all__ = ["CLIError", "build_parser", "run_cli"]
