"""
cguard scanner.

High-level interface for scanning C source code. Integrates the full
pipeline:
    Source Code -> CFrontend -> FunctionUnits -> AnalysisEngine -> Findings

Usage:
    from cguard.scanner import CScanner

    scanner = CScanner()
    result = scanner.scan_file("app.c")

    for finding in result.findings:
        print(f"{finding.rule_id}: {finding.message}")
        print(f"  Location: {finding.location}")
"""

import json
import sys
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from cguard.analysis.engine import AnalysisEngine
from cguard.analysis.rules import RuleRegistry
from cguard.config import AnalysisConfig
from cguard.frontend.c_frontend import CFrontend
from cguard.reporter import AnalysisFailure, Finding, Severity, severity_rank


@dataclass
class ScanResult:
    """Result of scanning a file"""
    filename: str
    findings: List[Finding] = field(default_factory=list)
    failures: List[AnalysisFailure] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    scan_time_ms: float = 0.0
    lines_scanned: int = 0
    functions_analyzed: int = 0

    @property
    def has_findings(self) -> bool:
        return len(self.findings) > 0

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity == severity)

    def at_least(self, min_severity: Severity) -> 'ScanResult':
        """Copy keeping only findings at or above min_severity"""
        threshold = severity_rank(min_severity)
        return replace(self, findings=[f for f in self.findings
                                       if severity_rank(f.severity) <= threshold])

    def summary(self) -> Dict[str, int]:
        result = {"total": len(self.findings)}
        for severity in Severity:
            result[severity.value] = self.count(severity)
        return result

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "findings": [f.to_dict() for f in self.findings],
            "failures": [f.to_dict() for f in self.failures],
            "errors": self.errors,
            "cancelled": self.cancelled,
            "scan_time_ms": self.scan_time_ms,
            "lines_scanned": self.lines_scanned,
            "functions_analyzed": self.functions_analyzed,
            "summary": self.summary(),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class CScanner:
    """
    Main C vulnerability scanner.

    Parses a file with the tree-sitter frontend and analyzes every function
    definition it contains.
    """

    def __init__(self, config: AnalysisConfig = None, registry: RuleRegistry = None):
        self.config = config or AnalysisConfig()
        self.verbose = self.config.verbose
        self.frontend = CFrontend()
        self.engine = AnalysisEngine(self.config, registry)
        self._lock = threading.Lock()

    def scan(self, source_code: str, filename: str = "<unknown>",
             cancel_event: Optional[threading.Event] = None) -> ScanResult:
        """
        Scan source code for vulnerabilities.

        Args:
            source_code: C source code string
            filename: Filename for reporting
            cancel_event: when set, functions not yet started are skipped

        Returns:
            ScanResult with findings
        """
        start_time = time.time()
        result = ScanResult(filename=filename)
        result.lines_scanned = source_code.count('\n') + 1

        self._log(f"Parsing {filename}...")
        # a tree-sitter parser is not safe to share between threads
        with self._lock:
            tu = self.frontend.translate(source_code, filename)
        self._log(f"Found {len(tu)} functions")

        run = self.engine.analyze(tu.functions, cancel_event)
        result.findings = run.findings
        result.failures = run.failures
        result.cancelled = run.cancelled
        result.functions_analyzed = len(tu) - len(run.failures) - len(run.cancelled)

        result.scan_time_ms = (time.time() - start_time) * 1000
        self._log(f"Scan complete: {len(result.findings)} findings")
        self._log(f"Time: {result.scan_time_ms:.2f}ms")
        return result

    def scan_file(self, filepath: str) -> ScanResult:
        """
        Scan a source file.

        A missing or unreadable file is reported in ScanResult.errors.
        """
        path = Path(filepath)
        if not path.is_file():
            result = ScanResult(filename=str(path))
            result.errors.append(f"File not found: {filepath}")
            return result
        try:
            source_code = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            result = ScanResult(filename=str(path))
            result.errors.append(f"Cannot read {filepath}: {e}")
            return result
        return self.scan(source_code, str(path))

    def scan_directory(self, dirpath: str, pattern: str = "**/*.c") -> List[ScanResult]:
        """Scan all matching files in a directory, in path order"""
        results = []
        for filepath in sorted(Path(dirpath).glob(pattern)):
            if filepath.is_file():
                results.append(self.scan_file(str(filepath)))
        return results

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[Scanner] {message}", file=sys.stderr)
