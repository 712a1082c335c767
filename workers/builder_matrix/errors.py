"""
Errors — the builder_matrix failure taxonomy.

Two families:
  1. Fatal errors raised before any compilation starts (bad configuration,
     no usable toolchain).  They propagate to the caller and abort the run.
  2. Per-target errors (BuildTargetError) raised while building a single
     component.  The executor catches these, records a failed BuildResult
     and moves on to the next target.
"""
from typing import Iterable, List, Optional


class BuilderMatrixError(Exception):
    """Base class for every error raised by builder_matrix."""


# ── Fatal: configuration ─────────────────────────────────────────────────────

class ConfigurationError(BuilderMatrixError):
    """The run cannot proceed for any target."""


class UnknownArchitectureTarget(ConfigurationError):
    def __init__(self, target_id: str, valid: Iterable[str]):
        self.target_id = target_id
        self.valid = sorted(valid)
        super().__init__(
            f"Unknown architecture target: {target_id!r} "
            f"(valid targets: {', '.join(self.valid)})"
        )


class UnknownComponent(ConfigurationError):
    def __init__(self, names: Iterable[str], valid: Iterable[str]):
        self.names = list(names)
        self.valid = list(valid)
        super().__init__(
            f"Unknown component(s): {', '.join(self.names)} "
            f"(valid components: {', '.join(self.valid)})"
        )


class InvalidRegistry(ConfigurationError):
    """A registry file could not be loaded or validated."""


# ── Fatal: toolchain ─────────────────────────────────────────────────────────

class NoToolchainFound(BuilderMatrixError):
    def __init__(self, candidates: Iterable[str]):
        self.candidates = list(candidates)
        super().__init__(
            f"No compiler found on the search path (tried: {', '.join(self.candidates)})"
        )


class ToolchainActivationFailed(BuilderMatrixError):
    def __init__(self, module: str, available: str = ""):
        self.module = module
        self.available = available
        msg = f"Failed to load module {module}"
        if available:
            msg += f"\nAvailable modules:\n{available}"
        super().__init__(msg)


# ── Recovered: per-target ────────────────────────────────────────────────────

class BuildTargetError(BuilderMatrixError):
    """A single target failed; the rest of the matrix still runs."""

    def __init__(
        self,
        target: str,
        message: str,
        command: Optional[List[str]] = None,
        exit_code: Optional[int] = None,
        diagnostic_output: str = "",
    ):
        self.target = target
        self.command = command
        self.exit_code = exit_code
        self.diagnostic_output = diagnostic_output
        super().__init__(message)


class CompilationFailed(BuildTargetError):
    pass


class MissingSourceFile(BuildTargetError):
    def __init__(self, target: str, missing: List[str]):
        self.missing = missing
        super().__init__(
            target,
            f"Source file(s) not found for {target}: {', '.join(missing)}",
            diagnostic_output="\n".join(f"missing: {p}" for p in missing),
        )
