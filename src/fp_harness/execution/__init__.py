"""Job execution: subprocess runner, invocation conventions, worker pool, results.

Import from the submodules directly; this package keeps no re-exports so the
registry parser can load :mod:`fp_harness.execution.invocation` cheaply.
"""
