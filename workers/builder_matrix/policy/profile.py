"""
Profile — architecture-target descriptors.

Each profile maps a symbolic architecture target to the optimization flags
handed to the compiler, plus a portability class that the report uses to
warn the operator.  Adding a target is a table change, not a code change.

Resolution is pure: no I/O, no subprocesses.
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import Dict, Tuple

from builder_matrix.errors import UnknownArchitectureTarget


@unique
class Portability(str, Enum):
    PORTABLE = "portable"
    CONDITIONAL = "conditional"
    MACHINE_SPECIFIC = "machine-specific"


@dataclass(frozen=True)
class ArchitectureProfile:
    """One CPU-architecture target."""

    target_id: str
    flags: Tuple[str, ...]
    portability: Portability
    description: str = ""

    @property
    def flag_string(self) -> str:
        return " ".join(self.flags)

    @property
    def is_machine_specific(self) -> bool:
        return self.portability == Portability.MACHINE_SPECIFIC


_AVX2 = ("-xCORE-AVX2",)

ARCH_PROFILES: Dict[str, ArchitectureProfile] = {
    "portable": ArchitectureProfile(
        target_id="portable",
        flags=_AVX2,
        portability=Portability.PORTABLE,
        description="AVX2 baseline, runs on most modern CPUs (Haswell 2013+)",
    ),
    "avx2": ArchitectureProfile(
        target_id="avx2",
        flags=_AVX2,
        portability=Portability.PORTABLE,
        description="Same as portable",
    ),
    "avx512": ArchitectureProfile(
        target_id="avx512",
        flags=("-xCORE-AVX512",),
        portability=Portability.CONDITIONAL,
        description="Requires AVX512 (Skylake-X 2017+), may not run on all nodes",
    ),
    # Runtime dispatch: Skylake-AVX512 baseline plus Cascade Lake / Ice Lake paths
    "multi": ArchitectureProfile(
        target_id="multi",
        flags=("-axICELAKE-SERVER,CASCADELAKE", "-xSKYLAKE-AVX512"),
        portability=Portability.CONDITIONAL,
        description="Multi-dispatch: Skylake-AVX512 baseline + Cascade Lake + Ice Lake paths",
    ),
    "native": ArchitectureProfile(
        target_id="native",
        flags=("-xHost",),
        portability=Portability.MACHINE_SPECIFIC,
        description="Optimized for the build machine's CPU only, NOT portable",
    ),
}


def resolve(target_id: str) -> ArchitectureProfile:
    """
    Look up the profile for *target_id*.

    Raises
    ------
    UnknownArchitectureTarget
        If *target_id* is not in the table.
    """
    try:
        return ARCH_PROFILES[target_id]
    except KeyError:
        raise UnknownArchitectureTarget(target_id, ARCH_PROFILES) from None
