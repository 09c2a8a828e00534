"""
Tests for the C scanner.
"""

import json
import threading

import pytest

from cguard.config import AnalysisConfig
from cguard.reporter import Severity

try:
    import tree_sitter_c
    from cguard.scanner import CScanner
    C_AVAILABLE = True
except ImportError:
    C_AVAILABLE = False


pytestmark = pytest.mark.skipif(not C_AVAILABLE, reason="tree-sitter-c not installed")


TWO_FUNCTIONS = """
#include <string.h>

void tiny(void) {
    char tiny[5];
    strcpy(tiny, "Hello World");
}

void roomy(void) {
    char buffer[100];
    strcpy(buffer, "Hello");
}
"""


@pytest.fixture
def scanner():
    return CScanner(AnalysisConfig(max_workers=2))


class TestScan:

    def test_scan_source(self, scanner):
        result = scanner.scan(TWO_FUNCTIONS, "two.c")
        assert result.functions_analyzed == 2
        assert len(result.findings) == 1
        finding = result.findings[0]
        assert finding.rule_id == "unbounded-copy"
        assert finding.function == "tiny"
        assert finding.location.file == "two.c"
        assert finding.location.line == 6
        assert result.count(Severity.HIGH) == 1
        assert result.has_findings

    def test_lines_scanned(self, scanner):
        assert scanner.scan("int x;\nint y;\n").lines_scanned == 3

    def test_to_json(self, scanner):
        data = json.loads(scanner.scan(TWO_FUNCTIONS, "two.c").to_json())
        assert data["summary"]["total"] == 1
        assert data["findings"][0]["cwe_id"] == "CWE-120"

    def test_syntax_error_is_a_failure(self, scanner):
        source = TWO_FUNCTIONS + "\nvoid broken(void) { char b[4]; strcpy(b, ; }\n"
        result = scanner.scan(source, "two.c")
        # the malformed function is either skipped by the parser or reported as a failure
        assert [f.function for f in result.findings] == ["tiny"]
        assert all(failure.unit == "broken" for failure in result.failures)

    def test_cancelled(self, scanner):
        event = threading.Event()
        event.set()
        result = scanner.scan(TWO_FUNCTIONS, "two.c", cancel_event=event)
        assert result.findings == []
        assert result.cancelled == ["tiny", "roomy"]
        assert result.functions_analyzed == 0


class TestFiles:

    def test_missing_file(self, scanner, tmp_path):
        result = scanner.scan_file(str(tmp_path / "absent.c"))
        assert result.errors and "File not found" in result.errors[0]
        assert result.findings == []

    def test_directory_in_path_order(self, scanner, tmp_path):
        (tmp_path / "b.c").write_text(TWO_FUNCTIONS)
        (tmp_path / "a.c").write_text("void ok(void) { }\n")
        (tmp_path / "notes.txt").write_text("not C")
        results = scanner.scan_directory(str(tmp_path))
        assert [r.filename.rsplit("/", 1)[-1] for r in results] == ["a.c", "b.c"]
        assert [len(r.findings) for r in results] == [0, 1]

    def test_custom_pattern(self, scanner, tmp_path):
        (tmp_path / "x.h").write_text("static void h(void) { char b[2]; gets(b); }\n")
        results = scanner.scan_directory(str(tmp_path), pattern="*.h")
        assert len(results) == 1
        assert results[0].findings[0].rule_id == "dangerous-input-function"


class TestRobustness:

    def test_undefined_shift_does_not_stop_the_scan(self, scanner):
        source = (
            "void bad(void) { int arr[10]; arr[1 << -1] = 0; }\n"
            "void good(void) { char tiny[4]; strcpy(tiny, \"too long here\"); }\n"
        )
        result = scanner.scan(source, "shift.c")
        assert result.failures == []
        assert [(f.function, f.rule_id) for f in result.findings] == [("good", "unbounded-copy")]

    def test_not_equal_loop_bound(self, scanner):
        source = "void fill(void) { int a[8]; for (int i = 0; i != 9; i++) a[i] = 0; }\n"
        result = scanner.scan(source, "loop.c")
        assert [(f.location.line, f.rule_id) for f in result.findings] == [
            (1, "loop-index-out-of-bounds")]

    def test_reallocation_cycle_is_clean(self, scanner):
        source = """
void cycle(void) {
    char *ptr = malloc(50);
    strcpy(ptr, "Test");
    free(ptr);
    ptr = malloc(50);
    strcpy(ptr, "New data");
    free(ptr);
}
"""
        assert scanner.scan(source, "cycle.c").findings == []
