"""
Report — aggregate build and verification results into a RunSummary and
render it for the operator.

The exit code is derived from the build results alone: non-zero iff at
least one target failed.  Verification findings are reported but never
change it.
"""
from pathlib import Path
from typing import List, Optional, Sequence

from builder_matrix.core.toolchain import ToolchainInfo
from builder_matrix.io.schema import (
    ArchitectureRecord,
    BuildCounts,
    BuildResult,
    FunctionalCheck,
    Linkage,
    Outcome,
    RunSummary,
    ToolchainRecord,
    VerificationResult,
)
from builder_matrix.policy.profile import ArchitectureProfile

EXIT_OK = 0
EXIT_FAILED = 1

PORTABLE_REBUILD_HINT = "-a portable"


def portability_notice(arch: ArchitectureProfile) -> Optional[str]:
    if not arch.is_machine_specific:
        return None
    return (
        f"These binaries were built with {arch.flag_string} and may NOT run on "
        f"other machines. For portable binaries, rebuild with: {PORTABLE_REBUILD_HINT}"
    )


def summarize(
    build_results: Sequence[BuildResult],
    verification_results: Sequence[VerificationResult],
    arch: ArchitectureProfile,
    toolchain: Optional[ToolchainInfo] = None,
    output_dir: Optional[Path] = None,
) -> RunSummary:
    failed = sum(1 for b in build_results if b.outcome == Outcome.FAILED)
    counts = BuildCounts(
        total=len(build_results),
        succeeded=len(build_results) - failed,
        failed=failed,
    )

    tc = None
    if toolchain is not None:
        tc = ToolchainRecord(
            compiler_path=toolchain.compiler_path,
            kind=toolchain.kind.value,
            version_string=toolchain.version_string,
            c_compiler_path=toolchain.c_compiler_path,
        )

    return RunSummary(
        toolchain=tc,
        architecture=ArchitectureRecord(
            target_id=arch.target_id,
            flag_string=arch.flag_string,
            portability=arch.portability.value,
            description=arch.description,
        ),
        output_dir=str(output_dir) if output_dir is not None else "",
        builds=list(build_results),
        verifications=list(verification_results),
        counts=counts,
        portability_notice=portability_notice(arch),
        exit_code=EXIT_FAILED if failed else EXIT_OK,
    )


# ── Text rendering ───────────────────────────────────────────────────────────

def _section(title: str) -> str:
    return f"\n========== {title} =========="


def _linkage_line(v: VerificationResult) -> str:
    if v.linkage == Linkage.STATIC:
        return "fully static"
    if v.linkage == Linkage.DYNAMIC:
        return "dynamic: " + ", ".join(v.dynamic_libraries)
    return f"unknown ({v.linkage_error})"


def render_summary(summary: RunSummary) -> str:
    """Human-readable breakdown of the run."""
    lines: List[str] = [_section("Build Summary")]

    if summary.toolchain is not None:
        version = summary.toolchain.version_string or "version unknown"
        lines.append(f"Compiler: {summary.toolchain.compiler_path} ({version})")
    arch = summary.architecture
    lines.append(f"Architecture: {arch.target_id} ({arch.flag_string}) [{arch.portability}]")

    if summary.succeeded:
        lines.append("Successfully built:")
        lines.extend(f"  - {b.target}" for b in summary.succeeded)
    if summary.failed:
        lines.append("Failed to build:")
        for b in summary.failed:
            reason = b.failure_reason.value if b.failure_reason else "UNKNOWN"
            lines.append(f"  - {b.target} ({reason})")
            for src in b.missing_sources:
                lines.append(f"      missing: {src}")

    if summary.output_dir:
        lines.append(f"Output directory: {summary.output_dir}")

    if summary.verifications:
        lines.append(_section("Testing Binaries"))
        for v in summary.verifications:
            name = Path(v.artifact_path).name
            if v.functional_check == FunctionalCheck.PASSED:
                lines.append(f"{name}: OK ({v.functional_probe})")
            else:
                lines.append(f"{name}: (no --help/--version)")

        lines.append(_section("Verifying Static Linking"))
        for v in summary.verifications:
            lines.append(f"{Path(v.artifact_path).name}: {_linkage_line(v)}")

    if summary.portability_notice:
        lines.append("")
        lines.append(f"WARNING: {summary.portability_notice}")

    c = summary.counts
    lines.append("")
    lines.append(f"Targets: {c.total} (succeeded={c.succeeded}, failed={c.failed})")
    return "\n".join(lines)
