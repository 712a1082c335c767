"""
Schema — Pydantic models for build results, verification results and the
run summary.

BuildResult and VerificationResult are frozen once created.  The run
summary is the single authoritative record of a run and is written to
``<output_dir>/build_summary.json``.
"""
from datetime import datetime, timezone
from enum import Enum, unique
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from builder_matrix import PACKAGE_NAME, SCHEMA_VERSION, __version__


# ── Enums ────────────────────────────────────────────────────────────────────

@unique
class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@unique
class FailureReason(str, Enum):
    COMPILATION_FAILED = "COMPILATION_FAILED"
    MISSING_SOURCE_FILE = "MISSING_SOURCE_FILE"
    NO_ARTIFACT = "NO_ARTIFACT"
    INVOCATION_ERROR = "INVOCATION_ERROR"


@unique
class FunctionalCheck(str, Enum):
    PASSED = "passed"
    INCONCLUSIVE = "inconclusive"


@unique
class Linkage(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    UNKNOWN = "unknown"


# ── Per-target build result ──────────────────────────────────────────────────

class BuildResult(BaseModel):
    """Outcome of one compiler invocation (or the reason there was none)."""

    model_config = ConfigDict(frozen=True)

    target: str
    component: str = ""
    outcome: Outcome
    artifact_path: Optional[str] = None     # set iff succeeded
    diagnostic_output: str = ""

    failure_reason: Optional[FailureReason] = None
    missing_sources: List[str] = Field(default_factory=list)
    command: List[str] = Field(default_factory=list)
    exit_code: Optional[int] = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED


# ── Per-artifact verification ────────────────────────────────────────────────

class VerificationResult(BaseModel):
    """Smoke test + linkage audit for one artifact.  Informational only."""

    model_config = ConfigDict(frozen=True)

    artifact_path: str
    functional_check: FunctionalCheck
    functional_probe: Optional[str] = None   # "--help" or "--version"

    # Loader/VDSO entries already filtered out
    dynamic_libraries: List[str] = Field(default_factory=list)
    linkage: Linkage = Linkage.UNKNOWN
    linkage_mechanism: str = ""
    linkage_error: Optional[str] = None
    interpreter: Optional[str] = None

    sha256: str = ""
    size_bytes: int = 0

    @property
    def fully_static(self) -> bool:
        return self.linkage == Linkage.STATIC


# ── Run summary ──────────────────────────────────────────────────────────────

class ToolchainRecord(BaseModel):
    compiler_path: str
    kind: str
    version_string: Optional[str] = None
    c_compiler_path: Optional[str] = None


class ArchitectureRecord(BaseModel):
    target_id: str
    flag_string: str
    portability: str
    description: str = ""


class BuildCounts(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class RunSummary(BaseModel):
    """Everything one run produced.  exit_code derives from builds only."""

    package_name: str = PACKAGE_NAME
    package_version: str = __version__
    schema_version: str = SCHEMA_VERSION

    toolchain: Optional[ToolchainRecord] = None
    architecture: ArchitectureRecord
    output_dir: str = ""

    builds: List[BuildResult] = Field(default_factory=list)
    verifications: List[VerificationResult] = Field(default_factory=list)
    counts: BuildCounts = Field(default_factory=BuildCounts)

    portability_notice: Optional[str] = None
    exit_code: int = 0

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def succeeded(self) -> List[BuildResult]:
        return [b for b in self.builds if b.outcome == Outcome.SUCCEEDED]

    @property
    def failed(self) -> List[BuildResult]:
        return [b for b in self.builds if b.outcome == Outcome.FAILED]
