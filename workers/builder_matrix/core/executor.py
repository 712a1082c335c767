"""
Executor — build every selected target, one at a time, and keep going.

For each BuildTarget, in order:
  1. check that all source files exist (MISSING_SOURCE_FILE otherwise),
  2. compose the compiler command from toolchain + architecture + target,
  3. run it as a blocking subprocess and capture its output,
  4. record a BuildResult.

A failed target never stops the matrix.  There are no retries and no
timeouts on compiler invocations; a hung compiler blocks the run until an
external watchdog intervenes.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from builder_matrix.core.registry import BuildTarget
from builder_matrix.core.toolchain import ToolchainInfo
from builder_matrix.errors import BuildTargetError, CompilationFailed, MissingSourceFile
from builder_matrix.io.schema import BuildResult, FailureReason, Outcome
from builder_matrix.policy.profile import ArchitectureProfile

logger = logging.getLogger(__name__)


OPT_FLAGS = ("-O3",)

# -static: libstdc++, libgcc, libc
# -static-intel: Intel runtime libraries
STATIC_FLAGS = ("-static", "-static-intel")


class BuildMethod(str, Enum):
    DIRECT = "direct"
    CMAKE = "cmake"


def _diagnostics(stdout: str, stderr: str) -> str:
    parts = []
    if stdout.strip():
        parts.append(f"STDOUT:\n{stdout}")
    if stderr.strip():
        parts.append(f"STDERR:\n{stderr}")
    return "\n\n".join(parts)


class BuildMatrixExecutor:
    """Compose and run one compiler invocation per target."""

    def __init__(
        self,
        toolchain: ToolchainInfo,
        arch: ArchitectureProfile,
        output_dir: Path,
        env: Optional[Mapping[str, str]] = None,
        build_method: BuildMethod = BuildMethod.DIRECT,
        jobs: Optional[int] = None,
        extra_cxxflags: Sequence[str] = (),
    ):
        self.toolchain = toolchain
        self.arch = arch
        self.output_dir = Path(output_dir)
        self.logs_dir = self.output_dir / "logs"
        self.env = dict(env) if env is not None else None
        self.build_method = BuildMethod(build_method)
        if jobs is not None and jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")
        self.jobs = jobs if jobs is not None else (os.cpu_count() or 4)
        self.extra_cxxflags = list(extra_cxxflags)

    # -----------------------------------------------------------------
    # Command synthesis
    # -----------------------------------------------------------------

    def compile_flags(self, target: BuildTarget) -> List[str]:
        """Standard, optimization, architecture, static-link and target flags."""
        return (
            [f"-std=c++{target.language_standard}"]
            + list(OPT_FLAGS)
            + list(self.arch.flags)
            + list(STATIC_FLAGS)
            + list(target.extra_flags)
            + self.extra_cxxflags
        )

    def artifact_path(self, target: BuildTarget) -> Path:
        return self.output_dir / target.name

    def cmake_build_dir(self, target: BuildTarget) -> Path:
        return self.output_dir / ".cmake" / target.name

    def compose_command(self, target: BuildTarget) -> List[str]:
        """Full direct-compilation command line for *target*."""
        includes = [f"-I{inc}" for inc in target.include_dirs]
        return (
            [self.toolchain.compiler_path]
            + self.compile_flags(target)
            + includes
            + ["-o", str(self.artifact_path(target))]
            + list(target.source_files)
        )

    def compose_cmake_commands(self, target: BuildTarget) -> Tuple[List[str], List[str]]:
        """(configure, build) commands for a target with a CMake project."""
        build_dir = self.cmake_build_dir(target)
        configure = [
            "cmake",
            "-S", str(target.cmake_project),
            "-B", str(build_dir),
            f"-DCMAKE_CXX_COMPILER={self.toolchain.compiler_path}",
            f"-DCMAKE_CXX_FLAGS={' '.join(self.compile_flags(target))}",
        ]
        if self.toolchain.c_compiler_path:
            configure.append(f"-DCMAKE_C_COMPILER={self.toolchain.c_compiler_path}")
        build = ["cmake", "--build", str(build_dir), "-j", str(self.jobs)]
        return configure, build

    # -----------------------------------------------------------------
    # Process execution
    # -----------------------------------------------------------------

    def _run(self, cmd: List[str], target: BuildTarget, phase: str) -> Tuple[str, str, int]:
        """
        Run *cmd* to completion and return (stdout, stderr, exit_code).

        Non-empty output is also written to logs/<target>.<phase>.{stdout,stderr}.
        Output that is not valid UTF-8 is decoded with replacement characters.
        Raises CompilationFailed (exit_code None) if the process cannot be
        spawned or its logs cannot be written.
        """
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                env=self.env,
            )
        except OSError as e:
            raise CompilationFailed(
                target.name,
                f"Could not run {cmd[0]}: {e}",
                command=cmd,
                diagnostic_output=str(e),
            ) from e

        try:
            for suffix, content in (("stdout", result.stdout), ("stderr", result.stderr)):
                if content:
                    self.logs_dir.mkdir(parents=True, exist_ok=True)
                    (self.logs_dir / f"{target.name}.{phase}.{suffix}").write_text(content, encoding="utf-8")
        except OSError as e:
            raise CompilationFailed(
                target.name,
                f"Could not write logs for {target.name}: {e}",
                command=cmd,
                diagnostic_output=_diagnostics(result.stdout, result.stderr),
            ) from e

        return result.stdout, result.stderr, result.returncode

    def _check_sources(self, target: BuildTarget):
        missing = [src for src in target.source_files if not Path(src).is_file()]
        if not target.source_files:
            missing = ["(no source files matched)"]
        if missing:
            raise MissingSourceFile(target.name, missing)

    def _use_cmake(self, target: BuildTarget) -> bool:
        if self.build_method != BuildMethod.CMAKE:
            return False
        if target.cmake_project is None:
            logger.info("%s has no CMake project, compiling directly", target.name)
            return False
        return True

    # -----------------------------------------------------------------
    # Build a single target
    # -----------------------------------------------------------------

    def _build_direct(self, target: BuildTarget) -> Tuple[List[str], str, int]:
        cmd = self.compose_command(target)
        stdout, stderr, code = self._run(cmd, target, "compile")
        return cmd, _diagnostics(stdout, stderr), code

    def _build_cmake(self, target: BuildTarget) -> Tuple[List[str], str, int]:
        configure, build = self.compose_cmake_commands(target)
        stdout, stderr, code = self._run(configure, target, "configure")
        diag = _diagnostics(stdout, stderr)
        if code != 0:
            return configure, diag, code

        stdout, stderr, code = self._run(build, target, "build")
        diag = "\n\n".join(d for d in (diag, _diagnostics(stdout, stderr)) if d)
        cmd = configure + ["&&"] + build
        if code != 0:
            return cmd, diag, code

        produced = self.cmake_build_dir(target) / target.name
        if produced.is_file():
            try:
                shutil.copy2(produced, self.artifact_path(target))
            except OSError as e:
                raise CompilationFailed(
                    target.name,
                    f"Could not copy {produced} to {self.artifact_path(target)}: {e}",
                    command=cmd,
                    exit_code=code,
                    diagnostic_output="\n\n".join(d for d in (diag, str(e)) if d),
                ) from e
        return cmd, diag, code

    def build_target(self, target: BuildTarget) -> BuildResult:
        """
        Build one target.

        Returns a succeeded BuildResult; raises a BuildTargetError subclass
        on failure.
        """
        self._check_sources(target)

        artifact = self.artifact_path(target)
        if artifact.is_file():
            try:
                artifact.unlink()
            except OSError as e:
                raise CompilationFailed(
                    target.name,
                    f"Could not remove stale artifact {artifact}: {e}",
                    diagnostic_output=str(e),
                ) from e

        t0 = time.monotonic()
        if self._use_cmake(target):
            cmd, diag, code = self._build_cmake(target)
        else:
            cmd, diag, code = self._build_direct(target)
        duration = int((time.monotonic() - t0) * 1000)

        if code != 0:
            raise CompilationFailed(
                target.name,
                f"Build failed: {target.name} (exit code {code})",
                command=cmd,
                exit_code=code,
                diagnostic_output=diag,
            )
        if not artifact.is_file():
            raise CompilationFailed(
                target.name,
                f"Build failed: {target.name} produced no output at {artifact}",
                command=cmd,
                exit_code=code,
                diagnostic_output=diag,
            )

        return BuildResult(
            target=target.name,
            component=target.component,
            outcome=Outcome.SUCCEEDED,
            artifact_path=str(artifact),
            diagnostic_output=diag,
            command=cmd,
            exit_code=code,
            duration_ms=duration,
        )

    @staticmethod
    def _failure_reason(err: BuildTargetError) -> FailureReason:
        if isinstance(err, MissingSourceFile):
            return FailureReason.MISSING_SOURCE_FILE
        if err.exit_code is None:
            return FailureReason.INVOCATION_ERROR
        if err.exit_code == 0:
            return FailureReason.NO_ARTIFACT
        return FailureReason.COMPILATION_FAILED

    # -----------------------------------------------------------------
    # Execute the matrix
    # -----------------------------------------------------------------

    def execute(self, targets: Sequence[BuildTarget]) -> List[BuildResult]:
        """Build all *targets* in order; exactly one BuildResult per target."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        results: List[BuildResult] = []

        for target in targets:
            logger.info("Building %s (C++%s)", target.name, target.language_standard)
            t0 = time.monotonic()
            try:
                result = self.build_target(target)
                logger.info("Build successful: %s", result.artifact_path)
            except BuildTargetError as e:
                logger.error("%s", e)
                result = BuildResult(
                    target=target.name,
                    component=target.component,
                    outcome=Outcome.FAILED,
                    diagnostic_output=e.diagnostic_output,
                    failure_reason=self._failure_reason(e),
                    missing_sources=getattr(e, "missing", []),
                    command=e.command or [],
                    exit_code=e.exit_code,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
            results.append(result)

        return results


def execute(
    targets: Sequence[BuildTarget],
    toolchain: ToolchainInfo,
    arch: ArchitectureProfile,
    output_dir: Path,
    **kwargs,
) -> List[BuildResult]:
    """Convenience wrapper around BuildMatrixExecutor(...).execute(targets)."""
    return BuildMatrixExecutor(toolchain, arch, output_dir, **kwargs).execute(targets)
