"""
Registry — the static description of every buildable component.

A ComponentSpec holds paths relative to the source root, and glob patterns
for source sets that grow over time (``src/modes/*.cpp``).  resolve_targets
turns the selected specs into concrete BuildTargets with absolute paths.
Literal source paths are kept as-is even when missing so that the executor
can report them as MISSING_SOURCE_FILE.
"""
import glob
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError

from builder_matrix.errors import InvalidRegistry, UnknownComponent

logger = logging.getLogger(__name__)

ALL = "all"

OPENMP_FLAGS = ("-qopenmp", "-qopenmp-link=static")


@dataclass(frozen=True)
class BuildTarget:
    """One component, resolved against a source root."""

    name: str                        # artifact name, e.g. "voronota-lt"
    component: str                   # selection key, e.g. "lt"
    language_standard: str           # "11", "14", "17", ...
    source_files: Tuple[str, ...]
    include_dirs: Tuple[str, ...] = ()
    extra_flags: Tuple[str, ...] = ()
    cmake_project: Optional[str] = None


class ComponentSpec(BaseModel):
    """Registry entry; paths are relative to the source root."""

    component: str
    name: str
    language_standard: str
    sources: List[str]
    include_dirs: List[str] = Field(default_factory=list)
    extra_flags: List[str] = Field(default_factory=list)
    cmake_project: Optional[str] = None
    description: str = ""


class Registry(BaseModel):
    components: List[ComponentSpec]

    def keys(self) -> List[str]:
        return [c.component for c in self.components]


DEFAULT_REGISTRY = Registry(components=[
    ComponentSpec(
        component="core",
        name="voronota",
        language_standard="11",
        sources=["src/voronota.cpp", "src/modes/*.cpp"],
        description="Main voronota executable",
    ),
    ComponentSpec(
        component="lt",
        name="voronota-lt",
        language_standard="14",
        sources=["expansion_lt/src/voronota_lt.cpp"],
        extra_flags=list(OPENMP_FLAGS),
        cmake_project="expansion_lt",
        description="voronota-lt fast tessellation tool",
    ),
    ComponentSpec(
        component="lt-cadscore",
        name="cadscore-lt",
        language_standard="17",
        sources=["expansion_lt_cadscore/src/cadscore_lt.cpp"],
        include_dirs=["expansion_lt/src"],
        extra_flags=list(OPENMP_FLAGS),
        description="cadscore-lt CAD-score tool",
    ),
    ComponentSpec(
        component="js",
        name="voronota-js",
        language_standard="14",
        sources=["expansion_js/src/voronota_js.cpp"],
        include_dirs=["expansion_js/src/dependencies"],
        description="voronota-js JavaScript interface engine",
    ),
])


def load_registry(path: Path) -> Registry:
    """Load a registry from a JSON file of the form {"components": [...]}."""
    try:
        data = json.loads(Path(path).read_text())
        registry = Registry.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        raise InvalidRegistry(f"Cannot load registry {path}: {e}") from e

    keys = registry.keys()
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:
        raise InvalidRegistry(f"Duplicate components in {path}: {', '.join(dupes)}")
    return registry


# =============================================================================
# Selection
# =============================================================================

def select_components(
    selection: Iterable[str],
    registry: Registry = DEFAULT_REGISTRY,
) -> List[ComponentSpec]:
    """
    Filter the registry by component key or artifact name.

    Result is always in registry order and free of duplicates, whatever
    order the selection was given in.

    Raises
    ------
    UnknownComponent
        If any selected name matches no component.  Raised before anything
        is built.
    """
    wanted = [s for s in selection if s]
    if not wanted or ALL in wanted:
        return list(registry.components)

    known = {}
    for spec in registry.components:
        known[spec.component] = spec
        known[spec.name] = spec

    unknown = [w for w in wanted if w not in known]
    if unknown:
        raise UnknownComponent(unknown, registry.keys())

    chosen = {known[w].component for w in wanted}
    return [spec for spec in registry.components if spec.component in chosen]


def _expand_sources(patterns: Sequence[str], root: Path) -> Tuple[str, ...]:
    files: List[str] = []
    for pattern in patterns:
        if glob.has_magic(pattern):
            matches = sorted(glob.glob(str(root / pattern)))
            if not matches:
                logger.debug("Pattern %s matched no files", pattern)
            files.extend(matches)
        else:
            files.append(str(root / pattern))
    return tuple(files)


def to_target(spec: ComponentSpec, source_root: Path) -> BuildTarget:
    root = Path(source_root).resolve()
    return BuildTarget(
        name=spec.name,
        component=spec.component,
        language_standard=spec.language_standard,
        source_files=_expand_sources(spec.sources, root),
        include_dirs=tuple(str(root / d) for d in spec.include_dirs),
        extra_flags=tuple(spec.extra_flags),
        cmake_project=str(root / spec.cmake_project) if spec.cmake_project else None,
    )


def resolve_targets(
    selection: Iterable[str],
    source_root: Path,
    registry: Registry = DEFAULT_REGISTRY,
) -> List[BuildTarget]:
    """Selected components as BuildTargets, in registry order."""
    return [to_target(spec, source_root) for spec in select_components(selection, registry)]
