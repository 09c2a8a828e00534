"""
Finding records and the finding reporter.

The reporter is the single aggregation point of an analysis run: workers
produce per-function finding lists, and the engine merges them here. A
reporter is append-only; it never edits or removes a finding once added.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from cguard.ir.types import Location


class Severity(Enum):
    """Finding severity levels"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Display and exit-code order, most severe first
SEVERITY_ORDER: Dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


def severity_rank(severity: Severity) -> int:
    return SEVERITY_ORDER[severity]


def parse_severity(name: str) -> Severity:
    """Parse severity from string"""
    try:
        return Severity(name.lower())
    except ValueError:
        raise ValueError(f"unknown severity '{name}'") from None


class BugClass(Enum):
    """Defect classes, each tied to a CWE"""
    UNSAFE_COPY = "unsafe_copy"
    OUT_OF_BOUNDS = "out_of_bounds"
    MEMORY_LEAK = "memory_leak"
    USE_AFTER_FREE = "use_after_free"
    DOUBLE_FREE = "double_free"
    NULL_DEREFERENCE = "null_dereference"
    FORMAT_STRING = "format_string"
    DANGEROUS_INPUT = "dangerous_input"
    UNBOUNDED_FORMAT = "unbounded_format"


CWE_MAP: Dict[BugClass, str] = {
    BugClass.UNSAFE_COPY: "CWE-120",
    BugClass.OUT_OF_BOUNDS: "CWE-787",
    BugClass.MEMORY_LEAK: "CWE-401",
    BugClass.USE_AFTER_FREE: "CWE-416",
    BugClass.DOUBLE_FREE: "CWE-415",
    BugClass.NULL_DEREFERENCE: "CWE-476",
    BugClass.FORMAT_STRING: "CWE-134",
    BugClass.DANGEROUS_INPUT: "CWE-242",
    BugClass.UNBOUNDED_FORMAT: "CWE-120",
}


@dataclass(frozen=True)
class Finding:
    """One detected defect at one site"""
    rule_id: str
    severity: Severity
    location: Location
    message: str
    bug_class: BugClass
    function: str = ""
    variable: str = ""

    @property
    def cwe_id(self) -> str:
        return CWE_MAP[self.bug_class]

    @property
    def key(self) -> Tuple[str, Location]:
        return (self.rule_id, self.location)

    def sort_key(self) -> tuple:
        return self.location.sort_key() + (self.rule_id,)

    def __str__(self) -> str:
        return f"{self.location}: [{self.severity.value}] {self.rule_id}: {self.message}"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "bug_class": self.bug_class.value,
            "cwe_id": self.cwe_id,
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "function": self.function,
            "variable": self.variable,
            "message": self.message,
        }


@dataclass(frozen=True)
class AnalysisFailure:
    """A function that could not be analyzed. Carries no findings."""
    unit: str
    reason: str
    location: Optional[Location] = None

    def __str__(self) -> str:
        where = f" ({self.location})" if self.location else ""
        return f"{self.unit}{where}: {self.reason}"

    def to_dict(self) -> dict:
        return {
            "function": self.unit,
            "reason": self.reason,
            "location": str(self.location) if self.location else None,
        }


class FindingReporter:
    """
    Aggregates, deduplicates and orders findings.

    Findings with the same (rule id, location) are reported once; the first
    one added wins. All mutating methods are serialized by a lock so the
    engine's merge step may be called from any thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._findings: Dict[Tuple[str, Location], Finding] = {}
        self._failures: List[AnalysisFailure] = []

    def add(self, finding: Finding) -> bool:
        """Add a finding. Returns False if it duplicates one already present."""
        with self._lock:
            if finding.key in self._findings:
                return False
            self._findings[finding.key] = finding
            return True

    def extend(self, findings: List[Finding]) -> int:
        """Add several findings atomically. Returns how many were new."""
        added = 0
        with self._lock:
            for finding in findings:
                if finding.key not in self._findings:
                    self._findings[finding.key] = finding
                    added += 1
        return added

    def record_failure(self, failure: AnalysisFailure) -> None:
        with self._lock:
            self._failures.append(failure)

    def findings(self) -> List[Finding]:
        """All findings in deterministic (file, line, column, rule id) order"""
        with self._lock:
            return sorted(self._findings.values(), key=Finding.sort_key)

    def ranked(self) -> List[Finding]:
        """All findings, most severe first, then by location"""
        return sorted(self.findings(), key=lambda f: (severity_rank(f.severity),) + f.sort_key())

    def failures(self) -> List[AnalysisFailure]:
        with self._lock:
            return list(self._failures)

    def max_severity(self) -> Optional[Severity]:
        findings = self.findings()
        if not findings:
            return None
        return min((f.severity for f in findings), key=severity_rank)

    def counts(self) -> Dict[str, int]:
        result = {s.value: 0 for s in Severity}
        for f in self.findings():
            result[f.severity.value] += 1
        return result

    def exit_code(self, fail_on: str = "high") -> int:
        """1 if any finding is at least as severe as fail_on, else 0"""
        return 1 if should_fail(self.findings(), fail_on) else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._findings)


def should_fail(findings: List[Finding], fail_on: str) -> bool:
    """Determine if a run should fail based on findings"""
    if fail_on == "none":
        return False
    if fail_on == "any":
        return bool(findings)
    threshold = severity_rank(parse_severity(fail_on))
    return any(severity_rank(f.severity) <= threshold for f in findings)
