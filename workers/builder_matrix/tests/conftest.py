"""
Shared pytest fixtures for builder_matrix tests.

Provides:
  - a fake vendor compiler (POSIX shell script) installed on a temporary
    search path, so the executor can be driven end-to-end without Intel
    compilers;
  - a small source tree and registry to build from;
  - real ELF binaries compiled with gcc for linkage tests (skipped when gcc
    is unavailable or cannot link statically).

Fake compiler behaviour, driven by markers in the source files:
  #error       → exit 1 with a diagnostic on stderr
  NO_OUTPUT    → exit 0 without writing the output file
  NO_HELP      → artifact rejects both --help and --version
  VERSION_ONLY → artifact only accepts --version
  (default)    → artifact accepts --help
"""
import os
import shutil
import stat
import subprocess
import textwrap
from pathlib import Path

import pytest

from builder_matrix.core.registry import ComponentSpec, Registry
from builder_matrix.core.toolchain import ToolchainInfo, ToolchainKind
from builder_matrix.policy.profile import resolve

FAKE_VERSION = "Fake(R) oneAPI DPC++/C++ Compiler 2025.2.0"

FAKE_COMPILER = textwrap.dedent(r'''
    #!/bin/sh
    if [ "$1" = "--version" ]; then
        echo "__VERSION__"
        exit 0
    fi
    out=""
    srcs=""
    while [ $# -gt 0 ]; do
        case "$1" in
            -o) out="$2"; shift 2 ;;
            *.cpp|*.c) srcs="$srcs $1"; shift ;;
            *) shift ;;
        esac
    done
    mode=help
    for s in $srcs; do
        if grep -q '#error' "$s"; then
            echo "$s:1: error: #error directive" >&2
            exit 1
        fi
        if grep -q 'NO_OUTPUT' "$s"; then
            exit 0
        fi
        if grep -q 'NO_HELP' "$s"; then mode=none; fi
        if grep -q 'VERSION_ONLY' "$s"; then mode=version; fi
    done
    case "$mode" in
        help) printf '#!/bin/sh\n[ "$1" = "--help" ] && { echo usage; exit 0; }\nexit 1\n' > "$out" ;;
        version) printf '#!/bin/sh\n[ "$1" = "--version" ] && { echo 1.0; exit 0; }\nexit 1\n' > "$out" ;;
        none) printf '#!/bin/sh\nexit 1\n' > "$out" ;;
    esac
    chmod +x "$out"
    echo "compiled $out"
''').lstrip()

# Compiler whose --version is unsupported
MUTE_COMPILER = "#!/bin/sh\nexit 1\n"

# Stand-in for cmake, driven by markers in the project's CMakeLists.txt:
#   CONFIGURE_FAIL → configure exits 1
#   NO_OUTPUT      → build succeeds without producing <build_dir>/<name>
FAKE_CMAKE = textwrap.dedent(r'''
    #!/bin/sh
    if [ "$1" = "--build" ]; then
        build="$2"
        if grep -q NO_OUTPUT "$build/CMakeCache.txt"; then
            echo "nothing to build"
            exit 0
        fi
        name=$(basename "$build")
        printf '#!/bin/sh\nexit 0\n' > "$build/$name"
        chmod +x "$build/$name"
        echo "built $name"
        exit 0
    fi
    src="$2"
    build="$4"
    if grep -q CONFIGURE_FAIL "$src/CMakeLists.txt"; then
        echo "CMake Error at CMakeLists.txt:1" >&2
        exit 1
    fi
    mkdir -p "$build"
    cp "$src/CMakeLists.txt" "$build/CMakeCache.txt"
    echo "configured $build"
''').lstrip()

HELLO_C = textwrap.dedent("""\
    int main(int argc, char **argv) {
        (void)argc;
        (void)argv;
        return 0;
    }
""")


def write_executable(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def install_fake_compiler(bin_dir: Path, name: str, version: str = FAKE_VERSION) -> Path:
    return write_executable(bin_dir / name, FAKE_COMPILER.replace("__VERSION__", version))


def write_source(root: Path, rel: str, content: str = "int main() { return 0; }\n") -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)
    return p


@pytest.fixture(scope="session")
def sh_ok():
    """Skip tests that need a POSIX shell for the fake compiler."""
    if os.name != "posix" or shutil.which("sh") is None:
        pytest.skip("POSIX sh not available")


@pytest.fixture
def fake_bin(tmp_path, sh_ok) -> Path:
    """Directory holding a fake modern compiler pair (icpx/icx)."""
    d = tmp_path / "fakebin"
    install_fake_compiler(d, "icpx")
    install_fake_compiler(d, "icx")
    return d


@pytest.fixture
def fake_toolchain(fake_bin) -> ToolchainInfo:
    return ToolchainInfo(
        compiler_path=str(fake_bin / "icpx"),
        kind=ToolchainKind.VENDOR_MODERN,
        version_string=FAKE_VERSION,
        c_compiler_path=str(fake_bin / "icx"),
        label="oneAPI",
    )


@pytest.fixture
def fake_cmake(tmp_path, sh_ok, monkeypatch) -> Path:
    """Put a fake cmake first on PATH."""
    d = tmp_path / "cmakebin"
    write_executable(d / "cmake", FAKE_CMAKE)
    monkeypatch.setenv("PATH", f"{d}{os.pathsep}{os.environ.get('PATH', '')}")
    return d / "cmake"


@pytest.fixture
def portable():
    return resolve("portable")


@pytest.fixture
def source_root(tmp_path) -> Path:
    """Source tree with two healthy components, A and B."""
    root = tmp_path / "src_root"
    write_source(root, "a/main.cpp")
    write_source(root, "b/main.cpp")
    return root


@pytest.fixture
def ab_registry() -> Registry:
    return Registry(components=[
        ComponentSpec(component="A", name="A", language_standard="14", sources=["a/main.cpp"]),
        ComponentSpec(component="B", name="B", language_standard="17", sources=["b/main.cpp"],
                      extra_flags=["-qopenmp", "-qopenmp-link=static"]),
    ])


@pytest.fixture
def output_dir(tmp_path) -> Path:
    return tmp_path / "out"


# ── gcc-built ELF fixtures ──────────────────────────────────────────────────

@pytest.fixture(scope="session")
def gcc_ok():
    """Skip tests if gcc is not available or doesn't produce ELF binaries."""
    if shutil.which("gcc") is None:
        pytest.skip("gcc not available - install gcc to run these tests")


@pytest.fixture(scope="session")
def elf_dir(tmp_path_factory, gcc_ok) -> Path:
    d = tmp_path_factory.mktemp("elf_fixtures")
    (d / "hello.c").write_text(HELLO_C)
    return d


def _gcc(src: Path, out: Path, *flags: str) -> Path:
    subprocess.run(
        ["gcc", *flags, str(src), "-o", str(out)],
        check=True,
        capture_output=True,
        timeout=60,
    )
    if out.read_bytes()[:4] != b"\x7fELF":
        pytest.skip("gcc does not produce ELF binaries on this platform")
    return out


@pytest.fixture(scope="session")
def dynamic_binary(elf_dir) -> Path:
    """hello.c linked against the shared C library."""
    return _gcc(elf_dir / "hello.c", elf_dir / "hello_dynamic")


@pytest.fixture(scope="session")
def static_binary(elf_dir) -> Path:
    """hello.c linked with -static (skipped if static libc is missing)."""
    try:
        return _gcc(elf_dir / "hello.c", elf_dir / "hello_static", "-static")
    except subprocess.CalledProcessError:
        pytest.skip("static libc not installed")
