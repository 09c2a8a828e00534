"""
End-to-end tests over the labelled fixture in tests/data/corpus.c.

Each function in the fixture is either clean or carries a known multiset of
findings. Functions missing from EXPECTED must produce nothing.
"""

from collections import Counter
from pathlib import Path

import pytest

try:
    import tree_sitter_c
    from cguard.scanner import CScanner
    C_AVAILABLE = True
except ImportError:
    C_AVAILABLE = False

from cguard.config import AnalysisConfig
from cguard.reporter import Severity


pytestmark = pytest.mark.skipif(not C_AVAILABLE, reason="tree-sitter-c not installed")

CORPUS = Path(__file__).parent / "data" / "corpus.c"

FUNCTIONS = [
    "copy_literals_that_fit", "copy_literals_into_members", "copy_literal_too_long",
    "copy_into_macro_sized", "copy_from_parameter", "copy_from_larger_input",
    "copy_credentials", "oversized_bounded_copy", "declarations_only",
    "constant_index_overflow", "loop_off_by_one", "while_off_by_one",
    "loop_within_bounds", "reset_scoreboard", "leak_without_free",
    "leak_on_early_return", "free_properly", "use_after_free", "double_free",
    "free_then_reallocate", "overwrite_leak", "make_copy", "grow_with_realloc",
    "realloc_after_free", "switch_leak", "deref_without_null_check",
    "deref_after_null_check", "format_from_parameter", "format_with_literal",
    "format_into_fixed", "format_into_fixed_bounded", "reads_with_gets",
    "reads_with_fgets", "reads_past_buffer", "scanf_without_width",
    "scanf_with_width", "mixed_buffers", "main",
]

EXPECTED = {
    "copy_literal_too_long": {"unbounded-copy": 1},
    "copy_into_macro_sized": {"unbounded-copy": 1},
    "copy_from_parameter": {"unbounded-copy": 1},
    "copy_from_larger_input": {"unbounded-copy": 1},
    "copy_credentials": {"unbounded-copy": 1},
    "oversized_bounded_copy": {"oversized-length-argument": 1},
    "constant_index_overflow": {"array-index-out-of-bounds": 4},
    "loop_off_by_one": {"loop-index-out-of-bounds": 1},
    "while_off_by_one": {"loop-index-out-of-bounds": 1},
    "leak_without_free": {"leaked-allocation": 1},
    "leak_on_early_return": {"leaked-allocation": 1},
    "use_after_free": {"use-after-free": 2},
    "double_free": {"double-free": 1},
    "overwrite_leak": {"leaked-allocation": 1},
    "realloc_after_free": {"use-after-free": 1},
    "switch_leak": {"leaked-allocation": 1},
    "deref_without_null_check": {"unchecked-allocation-use": 1, "leaked-allocation": 1},
    "format_from_parameter": {"format-string-injection": 2},
    "format_into_fixed": {"unbounded-format": 1},
    "reads_with_gets": {"dangerous-input-function": 1},
    "reads_past_buffer": {"oversized-length-argument": 1},
    "scanf_without_width": {"dangerous-input-function": 1},
    "mixed_buffers": {"unbounded-copy": 1},
}

# (function, rule id, marker comment on the reported line)
MARKED = [
    ("loop_off_by_one", "loop-index-out-of-bounds", "/* off-by-one loop */"),
    ("while_off_by_one", "loop-index-out-of-bounds", "/* off-by-one while */"),
    ("leak_without_free", "leaked-allocation", "/* leak at exit */"),
    ("leak_on_early_return", "leaked-allocation", "/* early return leak */"),
    ("overwrite_leak", "leaked-allocation", "/* overwrite leak */"),
    ("switch_leak", "leaked-allocation", "/* switch leak at exit */"),
]


def line_of(source: str, marker: str) -> int:
    for number, line in enumerate(source.splitlines(), 1):
        if marker in line:
            return number
    raise AssertionError(f"marker {marker!r} not in corpus")


@pytest.fixture(scope="module")
def source():
    return CORPUS.read_text()


@pytest.fixture(scope="module")
def result():
    return CScanner(AnalysisConfig(max_workers=4)).scan_file(str(CORPUS))


def by_function(result, name):
    return [f for f in result.findings if f.function == name]


class TestCorpus:
    """Known findings per function"""

    def test_every_function_analyzed(self, result):
        assert result.errors == []
        assert result.failures == []
        assert result.functions_analyzed == len(FUNCTIONS)

    @pytest.mark.parametrize("name", FUNCTIONS)
    def test_function(self, result, name):
        found = Counter(f.rule_id for f in by_function(result, name))
        assert found == Counter(EXPECTED.get(name, {}))

    @pytest.mark.parametrize("name,rule_id,marker", MARKED)
    def test_reported_line(self, result, source, name, rule_id, marker):
        lines = [f.location.line for f in by_function(result, name) if f.rule_id == rule_id]
        assert lines == [line_of(source, marker)]

    def test_total(self, result):
        assert len(result.findings) == sum(sum(v.values()) for v in EXPECTED.values())

    def test_gets_is_critical(self, result):
        (finding,) = by_function(result, "reads_with_gets")
        assert finding.severity == Severity.CRITICAL
        assert finding.cwe_id == "CWE-242"

    def test_findings_sorted(self, result):
        keys = [f.sort_key() for f in result.findings]
        assert keys == sorted(keys)

    def test_files_reported(self, result):
        assert {f.location.file for f in result.findings} == {str(CORPUS)}


class TestDeterminism:
    """Repeated runs agree"""

    def test_idempotent(self, source):
        scanner = CScanner(AnalysisConfig(max_workers=3))
        first = scanner.scan(source, "corpus.c")
        second = scanner.scan(source, "corpus.c")
        assert first.findings == second.findings

    def test_worker_count_does_not_matter(self, source):
        serial = CScanner(AnalysisConfig(max_workers=1)).scan(source, "corpus.c")
        parallel = CScanner(AnalysisConfig(max_workers=8)).scan(source, "corpus.c")
        assert serial.findings == parallel.findings
