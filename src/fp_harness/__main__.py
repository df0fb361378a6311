"""Module entrypoint for ``python -m fp_harness``."""

from __future__ import annotations

from fp_harness.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
