"""
test_verifier — smoke tests and linkage audits.

  - --help, else --version; neither → INCONCLUSIVE (not a failure).
  - Loader/VDSO entries never appear in dynamic_libraries.
  - A non-ELF artifact has UNKNOWN linkage, never STATIC.
"""
import os

import pytest

from builder_matrix.core.linkage import (
    audit_linkage,
    filter_loader_entries,
    is_loader_entry,
    parse_ldd_output,
)
from builder_matrix.core.verifier import VerificationRunner, verify
from builder_matrix.io.schema import FunctionalCheck, Linkage

from conftest import write_executable

HELP_ONLY = '#!/bin/sh\n[ "$1" = "--help" ] && { echo usage; exit 0; }\nexit 1\n'
VERSION_ONLY = '#!/bin/sh\n[ "$1" = "--version" ] && { echo 1.0; exit 0; }\nexit 1\n'
NEITHER = "#!/bin/sh\nexit 1\n"
HANGS = "#!/bin/sh\nexec sleep 30\n"


LDD_DYNAMIC = """\
\tlinux-vdso.so.1 (0x00007ffd5b9f2000)
\tlibm.so.6 => /lib/x86_64-linux-gnu/libm.so.6 (0x00007f1c2a400000)
\tlibc.so.6 => /lib/x86_64-linux-gnu/libc.so.6 (0x00007f1c2a000000)
\t/lib64/ld-linux-x86-64.so.2 (0x00007f1c2a6f0000)
"""


class TestSmoke:

    def test_help_passes(self, tmp_path, sh_ok):
        art = write_executable(tmp_path / "tool", HELP_ONLY)
        check, probe = VerificationRunner().smoke_test(art)
        assert check == FunctionalCheck.PASSED
        assert probe == "--help"

    def test_version_fallback(self, tmp_path, sh_ok):
        art = write_executable(tmp_path / "tool", VERSION_ONLY)
        check, probe = VerificationRunner().smoke_test(art)
        assert check == FunctionalCheck.PASSED
        assert probe == "--version"

    def test_neither_is_inconclusive(self, tmp_path, sh_ok):
        art = write_executable(tmp_path / "tool", NEITHER)
        check, probe = VerificationRunner().smoke_test(art)
        assert check == FunctionalCheck.INCONCLUSIVE
        assert probe is None

    def test_hanging_probe_times_out(self, tmp_path, sh_ok):
        art = write_executable(tmp_path / "tool", HANGS)
        check, _ = VerificationRunner(smoke_timeout=1).smoke_test(art)
        assert check == FunctionalCheck.INCONCLUSIVE


class TestVerify:

    def test_missing_and_non_executable_skipped(self, tmp_path, sh_ok):
        plain = tmp_path / "plain"
        plain.write_text("data")
        good = write_executable(tmp_path / "good", HELP_ONLY)

        results = verify([tmp_path / "absent", plain, good])

        assert [r.artifact_path for r in results] == [str(good)]

    def test_script_has_unknown_linkage(self, tmp_path, sh_ok):
        art = write_executable(tmp_path / "tool", NEITHER)

        (result,) = verify([art])

        assert result.functional_check == FunctionalCheck.INCONCLUSIVE
        assert result.linkage == Linkage.UNKNOWN
        assert result.linkage_error == "not an ELF binary"
        assert not result.fully_static
        assert len(result.sha256) == 64
        assert result.size_bytes == len(NEITHER)

    def test_dynamic_binary(self, dynamic_binary):
        (result,) = verify([dynamic_binary])

        assert result.functional_check == FunctionalCheck.PASSED
        assert result.linkage == Linkage.DYNAMIC
        assert result.linkage_mechanism == "elf"
        assert any(lib.startswith("libc") for lib in result.dynamic_libraries)
        assert not any(is_loader_entry(lib) for lib in result.dynamic_libraries)
        assert result.interpreter

    def test_static_binary(self, static_binary):
        (result,) = verify([static_binary])

        assert result.linkage == Linkage.STATIC
        assert result.fully_static
        assert result.dynamic_libraries == []
        assert result.interpreter is None


class TestLinkage:

    def test_parse_ldd_dynamic(self):
        assert parse_ldd_output(LDD_DYNAMIC) == ["libc.so.6", "libm.so.6"]

    @pytest.mark.parametrize("text", [
        "\tstatically linked\n",
        "\tnot a dynamic executable\n",
    ])
    def test_parse_ldd_static(self, text):
        assert parse_ldd_output(text) == []

    def test_filter_loader_entries(self):
        names = [
            "libstdc++.so.6",
            "ld-linux-x86-64.so.2",
            "/lib64/ld-linux-x86-64.so.2",
            "linux-vdso.so.1",
            "libstdc++.so.6",
            "ld-musl-x86_64.so.1",
            "libiomp5.so",
        ]
        assert filter_loader_entries(names) == ["libiomp5.so", "libstdc++.so.6"]

    def test_ldd_rejects_non_elf(self, tmp_path):
        f = tmp_path / "script"
        f.write_text("#!/bin/sh\n")
        report = audit_linkage(f, "ldd")
        assert not report.ok
        assert report.mechanism == "ldd"


    def test_ldd_non_utf8_output(self, tmp_path, sh_ok, monkeypatch):
        bindir = tmp_path / "bin"
        write_executable(
            bindir / "ldd",
            "#!/bin/sh\nprintf '\\tlib\\351.so => /opt/lib\\351.so (0x0)\\n'\n",
        )
        monkeypatch.setenv("PATH", f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}")
        f = tmp_path / "binary"
        f.write_bytes(b"\x7fELF" + b"\0" * 60)

        report = audit_linkage(f, "ldd")

        assert report.ok
        assert report.libraries == ["lib\ufffd.so"]
