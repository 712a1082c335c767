"""
Toolchain — activate and detect the vendor C++ compiler.

Activation (optional) loads an environment module such as
``intel/2025.2.0`` in a login shell and captures the resulting environment,
which is then used for detection and for every build subprocess.

Detection walks an explicit priority list of candidates; the first compiler
found on the search path wins.  Newer front-ends (icpx/icx) come before the
classic ones (icpc/icc).  Adding a toolchain kind means adding a candidate.
"""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum, unique
from typing import Dict, List, Mapping, Optional, Sequence

from builder_matrix.errors import NoToolchainFound, ToolchainActivationFailed

logger = logging.getLogger(__name__)


@unique
class ToolchainKind(str, Enum):
    VENDOR_MODERN = "vendor-modern"
    VENDOR_CLASSIC = "vendor-classic"


@dataclass(frozen=True)
class ToolchainCandidate:
    """One compiler front-end the detector may pick."""

    cxx: str
    cc: str
    kind: ToolchainKind
    label: str


@dataclass(frozen=True)
class ToolchainInfo:
    """The compiler chosen for this run."""

    compiler_path: str
    kind: ToolchainKind
    version_string: Optional[str] = None
    c_compiler_path: Optional[str] = None
    label: str = ""


DEFAULT_CANDIDATES: Sequence[ToolchainCandidate] = (
    ToolchainCandidate("icpx", "icx", ToolchainKind.VENDOR_MODERN, "oneAPI"),
    ToolchainCandidate("icpc", "icc", ToolchainKind.VENDOR_CLASSIC, "classic Intel"),
)


# =============================================================================
# Activation (environment modules)
# =============================================================================

_ENV_MARKER = "__BUILDER_MATRIX_ENV__"


def _login_shell(script: str, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["bash", "-lc", script],
        capture_output=True,
        timeout=timeout,
    )


def _parse_env_dump(raw: bytes) -> Dict[str, str]:
    """Parse NUL-separated ``env -0`` output that follows the marker."""
    marker = f"\0{_ENV_MARKER}\0".encode()
    _, _, payload = raw.partition(marker)
    env: Dict[str, str] = {}
    for entry in payload.split(b"\0"):
        if not entry or b"=" not in entry:
            continue
        key, _, value = entry.decode("utf-8", errors="replace").partition("=")
        env[key] = value
    return env


def module_command_available() -> bool:
    """True if ``module`` is defined in a bash login shell."""
    try:
        r = _login_shell("type module >/dev/null 2>&1", timeout=30)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Login shell probe failed: %s", e)
        return False
    return r.returncode == 0


def activate_toolchain(module_spec: str, module_name: str = "intel") -> Optional[Dict[str, str]]:
    """
    Load *module_spec* (e.g. ``intel/2025.2.0``) and return the resulting
    environment, or None when no module system exists.

    Raises
    ------
    ToolchainActivationFailed
        The module system exists but refused to load *module_spec*.
    """
    logger.info("Loading compiler module: %s", module_spec)
    if not module_command_available():
        logger.warning("Module command not found. Assuming compiler is already in PATH.")
        return None

    script = (
        "module purge >/dev/null 2>&1; "
        f"module load {shlex.quote(module_spec)} >/dev/null 2>&1 || exit 1; "
        f"printf '\\0{_ENV_MARKER}\\0'; env -0"
    )
    r = _login_shell(script)
    env = _parse_env_dump(r.stdout) if r.returncode == 0 else {}
    if not env:
        available = list_modules(module_name)
        raise ToolchainActivationFailed(module_spec, available)

    logger.info("Loaded %s", module_spec)
    return env


def list_modules(module_name: str) -> str:
    """Best-effort ``module avail`` listing, filtered to *module_name*."""
    try:
        r = _login_shell(f"module avail {shlex.quote(module_name)} 2>&1", timeout=60)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("module avail failed: %s", e)
        return ""
    text = r.stdout.decode("utf-8", errors="replace")
    lines = [l for l in text.splitlines() if module_name.lower() in l.lower()]
    return "\n".join(lines)


# =============================================================================
# Detection
# =============================================================================

def query_version(binary: str, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """First line of ``<binary> --version``, or None."""
    try:
        r = subprocess.run(
            [binary, "--version"],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=30,
            env=dict(env) if env is not None else None,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Version query failed for %s: %s", binary, e)
        return None
    out = (r.stdout or r.stderr).strip()
    return out.splitlines()[0] if out else None


class ToolchainDetector:
    """Walk the candidate list in priority order and pick the first hit."""

    def __init__(
        self,
        candidates: Sequence[ToolchainCandidate] = DEFAULT_CANDIDATES,
        env: Optional[Mapping[str, str]] = None,
        search_path: Optional[str] = None,
    ):
        self.candidates = list(candidates)
        self.env = env
        if search_path is None and env is not None:
            search_path = env.get("PATH")
        self.search_path = search_path

    def _which(self, binary: str) -> Optional[str]:
        return shutil.which(binary, path=self.search_path)

    def detect(self) -> ToolchainInfo:
        """
        Return the first available toolchain.

        Raises
        ------
        NoToolchainFound
            If no candidate compiler is on the search path.
        """
        tried: List[str] = []
        for cand in self.candidates:
            tried.append(cand.cxx)
            cxx_path = self._which(cand.cxx)
            if cxx_path is None:
                logger.debug("Compiler %s not found", cand.cxx)
                continue

            logger.info("Using %s compiler: %s", cand.label or cand.kind.value, cand.cxx)
            version = query_version(cxx_path, self.env)
            if version:
                logger.info("Compiler version: %s", version)
            else:
                logger.warning("Could not determine version of %s", cxx_path)

            return ToolchainInfo(
                compiler_path=cxx_path,
                kind=cand.kind,
                version_string=version,
                c_compiler_path=self._which(cand.cc),
                label=cand.label,
            )

        raise NoToolchainFound(tried)


def detect(
    env: Optional[Mapping[str, str]] = None,
    candidates: Sequence[ToolchainCandidate] = DEFAULT_CANDIDATES,
) -> ToolchainInfo:
    """Convenience wrapper around ToolchainDetector(...).detect()."""
    return ToolchainDetector(candidates=candidates, env=env).detect()
