"""
Linkage — enumerate the dynamic-library dependencies of a binary.

Two mechanisms:
  - "elf": read DT_NEEDED entries and PT_INTERP with pyelftools (direct deps).
  - "ldd": parse ``ldd`` output (transitive deps, as the loader resolves them).

Dynamic-loader and VDSO entries are always present on dynamically linked
Linux binaries and are filtered out.  An empty list means fully static.
"""
from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"

_LOADER_PATTERNS = (
    re.compile(r"^ld-linux.*"),
    re.compile(r"^ld64\.so.*"),
    re.compile(r"^ld-musl.*"),
    re.compile(r"^linux-vdso.*"),
    re.compile(r"^linux-gate.*"),
)

# "libm.so.6 => /lib/x86_64-linux-gnu/libm.so.6 (0x...)"
# "/lib64/ld-linux-x86-64.so.2 (0x...)"
_LDD_LINE = re.compile(r"^\s*(\S+)")


@dataclass(frozen=True)
class LinkageReport:
    mechanism: str
    libraries: List[str] = field(default_factory=list)
    interpreter: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_loader_entry(name: str) -> bool:
    base = Path(name).name
    return any(p.match(base) for p in _LOADER_PATTERNS)


def filter_loader_entries(names: List[str]) -> List[str]:
    """Drop loader/VDSO entries, de-duplicate, sort."""
    return sorted({n for n in names if not is_loader_entry(n)})


def is_elf(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return f.read(4) == ELF_MAGIC
    except OSError:
        return False


def read_elf_needed(path: Path) -> LinkageReport:
    """DT_NEEDED entries from the dynamic section (pyelftools)."""
    needed: List[str] = []
    interp = None
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            for segment in elf.iter_segments():
                if segment["p_type"] == "PT_INTERP":
                    interp = segment.get_interp_name()
            for section in elf.iter_sections():
                if not isinstance(section, DynamicSection):
                    continue
                for tag in section.iter_tags():
                    if tag.entry.d_tag == "DT_NEEDED":
                        needed.append(tag.needed)
    except (ELFError, OSError) as e:
        logger.warning("ELF linkage read failed for %s: %s", path, e)
        return LinkageReport(mechanism="elf", error=str(e))

    return LinkageReport(
        mechanism="elf",
        libraries=filter_loader_entries(needed),
        interpreter=interp,
    )


def parse_ldd_output(text: str) -> List[str]:
    """Library names from ``ldd`` output; empty for static binaries."""
    if "statically linked" in text or "not a dynamic executable" in text:
        return []
    names: List[str] = []
    for line in text.splitlines():
        m = _LDD_LINE.match(line)
        if m and m.group(1):
            names.append(m.group(1))
    return filter_loader_entries(names)


def run_ldd(path: Path) -> LinkageReport:
    """Dependencies as reported by ``ldd``."""
    if not is_elf(path):
        return LinkageReport(mechanism="ldd", error="not an ELF binary")
    try:
        r = subprocess.run(
            ["ldd", str(path)],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=60,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("ldd not available for %s: %s", path, e)
        return LinkageReport(mechanism="ldd", error=f"ldd failed: {e}")

    text = r.stdout + r.stderr
    if r.returncode != 0 and "not a dynamic executable" not in text:
        return LinkageReport(mechanism="ldd", error=text.strip() or f"ldd exit {r.returncode}")
    return LinkageReport(mechanism="ldd", libraries=parse_ldd_output(text))


def audit_linkage(path: Path, mechanism: str = "elf") -> LinkageReport:
    if mechanism == "ldd":
        return run_ldd(path)
    if not is_elf(path):
        return LinkageReport(mechanism="elf", error="not an ELF binary")
    return read_elf_needed(path)
