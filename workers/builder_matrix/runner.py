"""
Runner — top-level orchestration: settings → builds → verification → summary.

Configuration errors (unknown architecture, unknown component, bad
registry) are raised before any subprocess is spawned.  Toolchain problems
are raised before anything is compiled.  After that the run always
completes and the exit code comes from the RunSummary.
"""
import argparse
import logging
import shlex
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from builder_matrix import __version__
from builder_matrix.config import Settings
from builder_matrix.core.executor import BuildMatrixExecutor, BuildMethod
from builder_matrix.core.registry import DEFAULT_REGISTRY, Registry, load_registry, resolve_targets
from builder_matrix.core.report import render_summary, summarize
from builder_matrix.core.toolchain import (
    DEFAULT_CANDIDATES,
    ToolchainCandidate,
    ToolchainDetector,
    activate_toolchain,
)
from builder_matrix.core.verifier import VerificationRunner
from builder_matrix.errors import BuilderMatrixError, ConfigurationError
from builder_matrix.io.schema import RunSummary
from builder_matrix.io.writer import write_summary
from builder_matrix.policy.profile import Portability, resolve

logger = logging.getLogger(__name__)

LINKAGE_TOOLS = ("elf", "ldd")


def _build_method(value: str) -> BuildMethod:
    try:
        return BuildMethod(value)
    except ValueError:
        valid = ", ".join(m.value for m in BuildMethod)
        raise ConfigurationError(f"Unknown build method: {value!r} (valid methods: {valid})") from None


def _split_flags(value: str) -> List[str]:
    try:
        return shlex.split(value)
    except ValueError as e:
        raise ConfigurationError(f"Cannot parse EXTRA_CXXFLAGS {value!r}: {e}") from None


def run_build(
    settings: Settings,
    registry: Optional[Registry] = None,
    candidates: Sequence[ToolchainCandidate] = DEFAULT_CANDIDATES,
) -> RunSummary:
    """
    Run the full build matrix described by *settings*.

    Parameters
    ----------
    settings : Settings
        Validated configuration (env / .env / CLI overrides).
    registry : Registry, optional
        Component registry.  Defaults to REGISTRY_FILE if set, otherwise
        the built-in registry.
    candidates : sequence of ToolchainCandidate
        Compiler discovery order.

    Returns
    -------
    RunSummary
    """
    # ── Step 1: validate configuration (no side effects) ─────────────
    arch = resolve(settings.ARCH_TARGET)
    if registry is None:
        registry = load_registry(settings.REGISTRY_FILE) if settings.REGISTRY_FILE else DEFAULT_REGISTRY
    targets = resolve_targets(settings.component_selection, settings.SOURCE_ROOT, registry)
    method = _build_method(settings.BUILD_METHOD)
    if settings.LINKAGE_TOOL not in LINKAGE_TOOLS:
        raise ConfigurationError(
            f"Unknown linkage tool: {settings.LINKAGE_TOOL!r} (valid: {', '.join(LINKAGE_TOOLS)})"
        )
    if settings.JOBS is not None and settings.JOBS < 1:
        raise ConfigurationError(f"JOBS must be at least 1, got {settings.JOBS}")
    extra_cxxflags = _split_flags(settings.EXTRA_CXXFLAGS)

    logger.info("Architecture: %s (%s)", arch.target_id, arch.description)
    if arch.portability == Portability.MACHINE_SPECIFIC:
        logger.warning("Architecture %s (%s) - NOT portable to other machines!", arch.target_id, arch.flag_string)
    elif arch.portability == Portability.CONDITIONAL:
        logger.warning("Architecture %s: %s", arch.target_id, arch.description)
    logger.info("Components: %s", ", ".join(t.name for t in targets))

    # ── Step 2: toolchain ────────────────────────────────────────────
    env = None
    if settings.ACTIVATE_MODULE:
        env = activate_toolchain(settings.module_spec, settings.MODULE_NAME)
    toolchain = ToolchainDetector(candidates=candidates, env=env).detect()

    # ── Step 3: build matrix ─────────────────────────────────────────
    output_dir = Path(settings.OUTPUT_DIR)
    executor = BuildMatrixExecutor(
        toolchain,
        arch,
        output_dir,
        env=env,
        build_method=method,
        jobs=settings.JOBS,
        extra_cxxflags=extra_cxxflags,
    )
    build_results = executor.execute(targets)

    # ── Step 4: verification (informational) ─────────────────────────
    artifacts = [b.artifact_path for b in build_results if b.succeeded and b.artifact_path]
    verifier = VerificationRunner(
        linkage_tool=settings.LINKAGE_TOOL,
        smoke_timeout=settings.SMOKE_TIMEOUT,
    )
    verification_results = verifier.verify(artifacts)

    # ── Step 5: summary ──────────────────────────────────────────────
    summary = summarize(
        build_results,
        verification_results,
        arch,
        toolchain=toolchain,
        output_dir=output_dir,
    )
    if settings.WRITE_SUMMARY:
        path = write_summary(summary, output_dir)
        logger.info("Summary written to %s", path)
    return summary


# ── CLI ──────────────────────────────────────────────────────────────────────

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="builder-matrix",
        description="Build static, architecture-tuned binaries for every component "
                    "with the vendor C++ compiler, then verify them.",
    )
    parser.add_argument("-m", "--module", dest="MODULE_VERSION",
                        help="Compiler module version (default: 2025.2.0)")
    parser.add_argument("-a", "--arch", dest="ARCH_TARGET",
                        help="Architecture target: portable, avx2, avx512, multi, native")
    parser.add_argument("-c", "--components", dest="COMPONENTS",
                        help="Comma-separated components, or 'all'")
    parser.add_argument("-j", "--jobs", dest="JOBS", type=int,
                        help="Parallel jobs for the build tool (default: auto-detect)")
    parser.add_argument("-o", "--output", dest="OUTPUT_DIR", type=Path,
                        help="Output directory for binaries")
    parser.add_argument("--source-root", dest="SOURCE_ROOT", type=Path,
                        help="Root of the source tree")
    parser.add_argument("--build-method", dest="BUILD_METHOD", choices=[m.value for m in BuildMethod],
                        help="direct compilation or cmake")
    parser.add_argument("--registry", dest="REGISTRY_FILE", type=Path,
                        help="JSON component registry replacing the built-in one")
    parser.add_argument("--linkage-tool", dest="LINKAGE_TOOL", choices=LINKAGE_TOOLS,
                        help="How to list dynamic dependencies")
    parser.add_argument("--no-activate", dest="ACTIVATE_MODULE", action="store_false", default=None,
                        help="Do not load an environment module before detecting the compiler")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for builder_matrix."""
    args = _parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        k: v for k, v in vars(args).items()
        if k.isupper() and v is not None
    }
    settings = Settings().model_copy(update=overrides)

    try:
        summary = run_build(settings)
    except BuilderMatrixError as e:
        logger.error("%s", e)
        return 1

    print(render_summary(summary))
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
