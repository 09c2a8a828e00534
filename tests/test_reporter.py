"""
Tests for finding records and the finding reporter.
"""

import json
import threading

import pytest

from cguard.ir.types import Location
from cguard.reporter import (
    AnalysisFailure, BugClass, Finding, FindingReporter, Severity,
    parse_severity, severity_rank, should_fail,
)


def finding(rule_id="unbounded-copy", line=10, column=5, severity=Severity.HIGH,
            bug_class=BugClass.UNSAFE_COPY, message="copy overflows", file="a.c") -> Finding:
    return Finding(rule_id, severity, Location(file, line, column), message, bug_class,
                   function="f", variable="buf")


class TestSeverity:
    """Severity parsing and ordering"""

    def test_parse(self):
        assert parse_severity("HIGH") == Severity.HIGH
        assert parse_severity("low") == Severity.LOW

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            parse_severity("urgent")

    def test_rank(self):
        ranks = [severity_rank(s) for s in (Severity.CRITICAL, Severity.HIGH,
                                            Severity.MEDIUM, Severity.LOW)]
        assert ranks == sorted(ranks)


class TestFinding:
    """Finding records"""

    def test_cwe(self):
        assert finding().cwe_id == "CWE-120"
        assert finding(bug_class=BugClass.USE_AFTER_FREE).cwe_id == "CWE-416"

    def test_to_dict(self):
        data = finding().to_dict()
        assert data["rule_id"] == "unbounded-copy"
        assert data["severity"] == "high"
        assert data["line"] == 10
        assert data["column"] == 5
        assert data["file"] == "a.c"
        assert data["variable"] == "buf"
        json.dumps(data)

    def test_str(self):
        assert str(finding()) == "a.c:10:5: [high] unbounded-copy: copy overflows"

    def test_failure_to_dict(self):
        failure = AnalysisFailure("f", "2 syntax error(s) in body", Location("a.c", 3))
        assert failure.to_dict() == {"function": "f", "reason": "2 syntax error(s) in body",
                                     "location": "a.c:3"}
        assert AnalysisFailure("g", "bad").to_dict()["location"] is None


class TestReporter:
    """Aggregation, deduplication and ordering"""

    def test_dedupe_by_rule_and_location(self):
        reporter = FindingReporter()
        assert reporter.add(finding(message="first"))
        assert not reporter.add(finding(message="second"))
        assert len(reporter) == 1
        assert reporter.findings()[0].message == "first"

    def test_same_location_different_rule(self):
        reporter = FindingReporter()
        reporter.add(finding())
        reporter.add(finding(rule_id="use-after-free", bug_class=BugClass.USE_AFTER_FREE))
        assert len(reporter) == 2

    def test_extend_counts_new(self):
        reporter = FindingReporter()
        reporter.add(finding(line=1))
        assert reporter.extend([finding(line=1), finding(line=2), finding(line=2)]) == 1

    def test_location_order(self):
        reporter = FindingReporter()
        reporter.extend([finding(line=20), finding(line=3, column=9), finding(line=3, column=1),
                         finding(line=1, file="b.c")])
        assert [(f.location.file, f.location.line, f.location.column) for f in reporter.findings()] == [
            ("a.c", 3, 1), ("a.c", 3, 9), ("a.c", 20, 5), ("b.c", 1, 5),
        ]

    def test_ranked(self):
        reporter = FindingReporter()
        reporter.extend([
            finding(line=1, severity=Severity.LOW, rule_id="x"),
            finding(line=2, severity=Severity.CRITICAL, rule_id="y"),
            finding(line=3, severity=Severity.HIGH),
        ])
        assert [f.severity for f in reporter.ranked()] == [Severity.CRITICAL, Severity.HIGH, Severity.LOW]

    def test_max_severity_and_counts(self):
        reporter = FindingReporter()
        assert reporter.max_severity() is None
        reporter.extend([finding(line=1, severity=Severity.MEDIUM),
                         finding(line=2, severity=Severity.HIGH)])
        assert reporter.max_severity() == Severity.HIGH
        assert reporter.counts() == {"critical": 0, "high": 1, "medium": 1, "low": 0}

    def test_failures_carry_no_findings(self):
        reporter = FindingReporter()
        reporter.record_failure(AnalysisFailure("f", "bad"))
        assert len(reporter) == 0
        assert [str(f) for f in reporter.failures()] == ["f: bad"]

    def test_concurrent_adds(self):
        reporter = FindingReporter()

        def worker(offset):
            for line in range(50):
                reporter.add(finding(line=line + offset))

        threads = [threading.Thread(target=worker, args=(i * 25,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        # offsets 0, 25, 50, 75 cover lines 0..124
        assert len(reporter) == 125


class TestExitCode:
    """Fail-on thresholds"""

    def test_thresholds(self):
        medium = [finding(severity=Severity.MEDIUM)]
        assert should_fail(medium, "medium")
        assert should_fail(medium, "low")
        assert not should_fail(medium, "high")

    def test_any_and_none(self):
        assert should_fail([finding(severity=Severity.LOW)], "any")
        assert not should_fail([], "any")
        assert not should_fail([finding(severity=Severity.CRITICAL)], "none")

    def test_reporter_exit_code(self):
        reporter = FindingReporter()
        assert reporter.exit_code() == 0
        reporter.add(finding(severity=Severity.CRITICAL))
        assert reporter.exit_code() == 1
        assert reporter.exit_code("none") == 0
