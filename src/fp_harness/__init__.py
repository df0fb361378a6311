"""Fixture generator and matrix test runner for fault-proof VMs and programs."""

__version__ = "0.3.0"

__all__ = ["__version__"]
