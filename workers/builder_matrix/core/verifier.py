"""
Verifier — post-build checks on every produced artifact.

1. Functional smoke test: ``--help``, then ``--version``.  Either exiting 0
   is enough.  A program that supports neither is INCONCLUSIVE, not broken.
2. Linkage audit: list dynamic-library dependencies.  Advisory only.

Nothing here affects the run's exit code.
"""
from __future__ import annotations

import hashlib
import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from builder_matrix.core.linkage import audit_linkage
from builder_matrix.io.schema import FunctionalCheck, Linkage, VerificationResult

logger = logging.getLogger(__name__)

SMOKE_PROBES = ("--help", "--version")


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


class VerificationRunner:
    """Smoke-test and linkage-audit a list of artifacts."""

    def __init__(
        self,
        linkage_tool: str = "elf",
        smoke_timeout: int = 30,
        probes: Sequence[str] = SMOKE_PROBES,
    ):
        self.linkage_tool = linkage_tool
        self.smoke_timeout = smoke_timeout
        self.probes = list(probes)

    def _probe(self, artifact: Path, arg: str) -> bool:
        try:
            r = subprocess.run(
                [str(artifact), arg],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.smoke_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.debug("%s %s timed out after %ss", artifact.name, arg, self.smoke_timeout)
            return False
        except OSError as e:
            logger.debug("%s %s could not run: %s", artifact.name, arg, e)
            return False
        return r.returncode == 0

    def smoke_test(self, artifact: Path) -> Tuple[FunctionalCheck, Optional[str]]:
        for arg in self.probes:
            if self._probe(artifact, arg):
                return FunctionalCheck.PASSED, arg
        return FunctionalCheck.INCONCLUSIVE, None

    def verify_one(self, artifact: Path) -> VerificationResult:
        check, probe = self.smoke_test(artifact)
        if check == FunctionalCheck.PASSED:
            logger.info("Testing %s... OK (%s)", artifact.name, probe)
        else:
            logger.warning("Testing %s... (no --help/--version)", artifact.name)

        report = audit_linkage(artifact, self.linkage_tool)
        if not report.ok:
            linkage = Linkage.UNKNOWN
            logger.warning("Linkage of %s unknown: %s", artifact.name, report.error)
        elif report.libraries:
            linkage = Linkage.DYNAMIC
            logger.info("%s links dynamically: %s", artifact.name, ", ".join(report.libraries))
        else:
            linkage = Linkage.STATIC
            logger.info("%s is fully static", artifact.name)

        return VerificationResult(
            artifact_path=str(artifact),
            functional_check=check,
            functional_probe=probe,
            dynamic_libraries=report.libraries,
            linkage=linkage,
            linkage_mechanism=report.mechanism,
            linkage_error=report.error,
            interpreter=report.interpreter,
            sha256=_sha256(artifact),
            size_bytes=artifact.stat().st_size,
        )

    def verify(self, artifacts: Sequence[Union[str, Path]]) -> List[VerificationResult]:
        """One VerificationResult per artifact that exists and is executable."""
        results: List[VerificationResult] = []
        for a in artifacts:
            path = Path(a)
            if not path.is_file() or not os.access(path, os.X_OK):
                logger.warning("Skipping %s: missing or not executable", path)
                continue
            results.append(self.verify_one(path))
        return results


def verify(artifacts: Sequence[Union[str, Path]], **kwargs) -> List[VerificationResult]:
    """Convenience wrapper around VerificationRunner(...).verify(artifacts)."""
    return VerificationRunner(**kwargs).verify(artifacts)
