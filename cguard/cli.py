"""
cguard CLI.

Command-line interface for scanning C source code for memory-safety and
input-handling defects.

Usage:
    # Scan a single file
    cguard scan app.c

    # Scan with JSON output
    cguard scan app.c --format json -o results.json

    # Scan a directory
    cguard scan src/ --pattern "**/*.c"

    # Only fail the build on critical findings
    cguard scan src/ --fail-on critical
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List

from cguard.config import AnalysisConfig
from cguard.reporter import Severity, parse_severity, severity_rank
from cguard.reporter import should_fail as findings_should_fail
from cguard.scanner import ScanResult


def create_parser() -> argparse.ArgumentParser:
    """Build the cguard argument parser"""
    parser = argparse.ArgumentParser(
        prog="cguard",
        description="cguard - static detection of unsafe memory and input handling in C",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # scan
    scan_parser = subparsers.add_parser("scan", help="Scan files for defects")
    scan_parser.add_argument(
        "target",
        help="File or directory to scan"
    )
    scan_parser.add_argument(
        "-p", "--pattern",
        default="**/*.c",
        help="Glob pattern for directory scan (default: **/*.c)"
    )
    scan_parser.add_argument(
        "-f", "--format",
        default="text",
        choices=["text", "json"],
        help="Output format (default: text)"
    )
    scan_parser.add_argument(
        "-o", "--output",
        help="Output file (default: stdout)"
    )
    scan_parser.add_argument(
        "--min-severity",
        default="low",
        choices=["critical", "high", "medium", "low"],
        help="Minimum severity to report in text or JSON output (default: low)"
    )
    scan_parser.add_argument(
        "--fail-on",
        choices=["critical", "high", "medium", "low", "any", "none"],
        default="high",
        help="Exit with error if findings of this severity are found (default: high)"
    )
    scan_parser.add_argument(
        "-j", "--workers",
        type=int,
        help="Worker threads, one function per task (default: cpu count + 4, max 32)"
    )
    scan_parser.add_argument(
        "--max-paths",
        type=int,
        help="Maximum live path states per function (default: 64)"
    )
    scan_parser.add_argument(
        "--timeout",
        type=int,
        help="Solver timeout per loop range query in ms (default: 2000)"
    )
    scan_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output on stderr"
    )

    return parser


SEVERITY_ICONS = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
}


def format_text_result(result: ScanResult, min_severity: Severity) -> str:
    """Render one file's findings, most severe first, down to min_severity"""
    lines = []

    # Header
    lines.append(f"\n{'='*60}")
    lines.append(f"cguard scan: {result.filename}")
    lines.append(f"{'='*60}")

    # Stats
    lines.append(f"\nLines scanned: {result.lines_scanned}")
    lines.append(f"Functions analyzed: {result.functions_analyzed}")
    lines.append(f"Scan time: {result.scan_time_ms:.2f}ms")

    if result.errors:
        lines.append("\nErrors:")
        for error in result.errors:
            lines.append(f"  ❌ {error}")

    if result.failures:
        lines.append("\nSkipped functions:")
        for failure in result.failures:
            lines.append(f"  ⚠ {failure}")

    findings = sorted(
        result.at_least(min_severity).findings,
        key=lambda f: (severity_rank(f.severity),) + f.sort_key(),
    )

    if findings:
        lines.append(f"\nFindings: {len(findings)}")
        lines.append("-" * 40)

        for i, finding in enumerate(findings, 1):
            icon = SEVERITY_ICONS.get(finding.severity, "⚫")
            lines.append(f"\n{i}. [{finding.severity.value.upper()}] {icon} {finding.rule_id}")
            lines.append(f"   Location: {finding.location}")
            if finding.function:
                lines.append(f"   Function: {finding.function}")
            lines.append(f"   Description: {finding.message}")
            lines.append(f"   CWE: {finding.cwe_id}")
            if finding.variable:
                lines.append(f"   Variable: {finding.variable}")
    else:
        lines.append("\n✅ No findings!")

    lines.append(f"\n{'='*60}\n")

    return "\n".join(lines)


def format_json_result(results: List[ScanResult], min_severity: Severity = Severity.LOW) -> str:
    """One file renders as its own object; several get a combined summary"""
    results = [r.at_least(min_severity) for r in results]
    if len(results) == 1:
        return results[0].to_json()
    combined = {
        "files": [r.to_dict() for r in results],
        "summary": {
            "files_scanned": len(results),
            "total_findings": sum(len(r.findings) for r in results),
            "critical": sum(r.count(Severity.CRITICAL) for r in results),
            "high": sum(r.count(Severity.HIGH) for r in results),
            "medium": sum(r.count(Severity.MEDIUM) for r in results),
            "low": sum(r.count(Severity.LOW) for r in results),
        }
    }
    return json.dumps(combined, indent=2)


def should_fail(results: List[ScanResult], fail_on: str) -> bool:
    """True if any finding across results meets the fail-on threshold"""
    return findings_should_fail([f for r in results for f in r.findings], fail_on)


def main(argv: List[str] = None) -> int:
    """Entry point for the cguard console script"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "scan":
        return cmd_scan(args)

    return 0


def cmd_scan(args) -> int:
    """cguard scan: analyze a file or every matching file under a directory"""
    target = Path(args.target)

    if not target.exists():
        print(f"Error: Target not found: {args.target}", file=sys.stderr)
        return 1

    try:
        config = AnalysisConfig.from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        from cguard.scanner import CScanner
        scanner = CScanner(config)
    except ImportError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Install tree-sitter: pip install tree-sitter tree-sitter-c", file=sys.stderr)
        return 1

    if target.is_file():
        results = [scanner.scan_file(str(target))]
    else:
        results = scanner.scan_directory(str(target), args.pattern)

    if not results:
        print("No files found to scan.", file=sys.stderr)
        return 1

    min_severity = parse_severity(args.min_severity)
    if args.format == "text":
        output = "\n".join(format_text_result(r, min_severity) for r in results)
    else:
        output = format_json_result(results, min_severity)

    if args.output:
        with open(args.output, 'w') as f:
            f.write(output)
    else:
        print(output)

    # exit status follows --fail-on
    if should_fail(results, args.fail_on):
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
