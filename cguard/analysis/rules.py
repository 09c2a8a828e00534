"""
Call-site rule engine.

Rules are registered by callee-name pattern and receive a CallSite whose
arguments have already been resolved against the current fact table. A rule
is a pure function: it reads the resolved facts and returns at most one
Finding. New APIs are covered by registering another rule; the tracker does
not change.

Usage:
    registry = default_registry()
    registry.register("no-system", "system", check_system)
    for finding in registry.evaluate(site):
        ...
"""

import re
import threading
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Callable, Dict, List, Optional

from cguard.ir.types import Exp, Location
from cguard.reporter import BugClass, Finding, Severity
from cguard.specs.c_specs import ApiClass, ApiSpec, SCANF_FAMILY
from .facts import (
    Capacity, TaintLabel,
    UNBOUNDED_COPY, UNBOUNDED_FORMAT, FORMAT_STRING_INJECTION, DANGEROUS_INPUT_FUNCTION,
    OVERSIZED_LENGTH_ARGUMENT, UNCHECKED_ALLOCATION_USE, LEAKED_ALLOCATION,
    USE_AFTER_FREE, DOUBLE_FREE, ARRAY_INDEX_OUT_OF_BOUNDS, LOOP_INDEX_OUT_OF_BOUNDS,
)


RULE_SEVERITY: Dict[str, Severity] = {
    UNBOUNDED_COPY: Severity.HIGH,
    UNBOUNDED_FORMAT: Severity.MEDIUM,
    FORMAT_STRING_INJECTION: Severity.HIGH,
    DANGEROUS_INPUT_FUNCTION: Severity.CRITICAL,
    OVERSIZED_LENGTH_ARGUMENT: Severity.HIGH,
    UNCHECKED_ALLOCATION_USE: Severity.MEDIUM,
    LEAKED_ALLOCATION: Severity.MEDIUM,
    USE_AFTER_FREE: Severity.CRITICAL,
    DOUBLE_FREE: Severity.HIGH,
    ARRAY_INDEX_OUT_OF_BOUNDS: Severity.HIGH,
    LOOP_INDEX_OUT_OF_BOUNDS: Severity.HIGH,
}

RULE_BUG_CLASS: Dict[str, BugClass] = {
    UNBOUNDED_COPY: BugClass.UNSAFE_COPY,
    UNBOUNDED_FORMAT: BugClass.UNBOUNDED_FORMAT,
    FORMAT_STRING_INJECTION: BugClass.FORMAT_STRING,
    DANGEROUS_INPUT_FUNCTION: BugClass.DANGEROUS_INPUT,
    OVERSIZED_LENGTH_ARGUMENT: BugClass.UNSAFE_COPY,
    UNCHECKED_ALLOCATION_USE: BugClass.NULL_DEREFERENCE,
    LEAKED_ALLOCATION: BugClass.MEMORY_LEAK,
    USE_AFTER_FREE: BugClass.USE_AFTER_FREE,
    DOUBLE_FREE: BugClass.DOUBLE_FREE,
    ARRAY_INDEX_OUT_OF_BOUNDS: BugClass.OUT_OF_BOUNDS,
    LOOP_INDEX_OUT_OF_BOUNDS: BugClass.OUT_OF_BOUNDS,
}


def make_finding(rule_id: str, location: Location, message: str,
                 function: str = "", variable: str = "",
                 severity: Optional[Severity] = None,
                 bug_class: Optional[BugClass] = None) -> Finding:
    """Build a Finding with the rule's default severity and bug class"""
    return Finding(
        rule_id=rule_id,
        severity=severity or RULE_SEVERITY.get(rule_id, Severity.MEDIUM),
        location=location,
        message=message,
        bug_class=bug_class or RULE_BUG_CLASS.get(rule_id, BugClass.UNSAFE_COPY),
        function=function,
        variable=variable,
    )


# =============================================================================
# Resolved call sites
# =============================================================================

@dataclass(frozen=True)
class ArgFacts:
    """
    Facts about one argument at a call site.

    literal_length is set when the argument is a string literal or a
    variable known to hold one; constant when it folds to an integer.
    """
    exp: Exp
    text: str
    taint: TaintLabel
    capacity: Capacity
    byte_capacity: Capacity
    literal_length: Optional[int] = None
    literal: Optional[str] = None
    constant: Optional[int] = None

    @property
    def is_literal(self) -> bool:
        return self.literal is not None


@dataclass(frozen=True)
class CallSite:
    """A call with its arguments resolved against the current facts"""
    callee: str
    spec: Optional[ApiSpec]
    args: List[ArgFacts]
    location: Location
    function: str = ""

    def arg(self, position: Optional[int]) -> Optional[ArgFacts]:
        if position is None or position >= len(self.args):
            return None
        return self.args[position]

    def finding(self, rule_id: str, message: str, variable: str = "") -> Finding:
        return make_finding(rule_id, self.location, message, self.function, variable)


RuleCheck = Callable[[CallSite], Optional[Finding]]


@dataclass
class Rule:
    rule_id: str
    patterns: List[str]
    check: RuleCheck

    def matches(self, callee: str) -> bool:
        return any(fnmatchcase(callee, p) for p in self.patterns)


class RuleRegistry:
    """
    Rules keyed by callee-name pattern.

    Patterns are shell-style (`*printf`). The rule list for a callee is
    resolved once and cached; registering a rule clears the cache.
    """

    def __init__(self):
        self._rules: List[Rule] = []
        self._cache: Dict[str, List[Rule]] = {}
        self._lock = threading.Lock()

    def register(self, rule_id: str, patterns, check: RuleCheck) -> None:
        if isinstance(patterns, str):
            patterns = [patterns]
        with self._lock:
            self._rules.append(Rule(rule_id, list(patterns), check))
            self._cache.clear()

    def rules_for(self, callee: str) -> List[Rule]:
        with self._lock:
            rules = self._cache.get(callee)
            if rules is None:
                rules = [r for r in self._rules if r.matches(callee)]
                self._cache[callee] = rules
            return rules

    def evaluate(self, site: CallSite) -> List[Finding]:
        findings = []
        for rule in self.rules_for(site.callee):
            finding = rule.check(site)
            if finding is not None:
                findings.append(finding)
        return findings

    def rule_ids(self) -> List[str]:
        with self._lock:
            return sorted({r.rule_id for r in self._rules})

    def __len__(self) -> int:
        return len(self._rules)


# =============================================================================
# Rule checks
# =============================================================================

def check_unbounded_copy(site: CallSite) -> Optional[Finding]:
    """
    strcpy-style copy into a buffer of known capacity.

    A literal source is flagged only if it does not fit, and an exact fit
    is safe. A non-literal source with External or Unknown taint is flagged
    unless it is itself a buffer no larger than the destination.
    """
    if site.spec is None:
        return None
    dest = site.arg(site.spec.dest_arg)
    src = site.arg(site.spec.src_arg)
    if dest is None or src is None or not dest.capacity.is_known:
        return None
    capacity = dest.capacity.value
    appends = site.callee in ("strcat", "wcscat")

    if src.literal_length is not None:
        needed = src.literal_length
        if appends and dest.literal_length is not None:
            needed = dest.literal_length + src.literal_length - 1
        if needed > capacity:
            return site.finding(
                UNBOUNDED_COPY,
                f"{site.callee}() writes {needed} bytes into '{dest.text}' "
                f"which holds {capacity}",
                dest.text,
            )
        return None

    if src.taint == TaintLabel.LITERAL:
        return None
    if not appends and src.capacity.is_known and src.capacity.value <= capacity:
        return None
    origin = "external input" if src.taint == TaintLabel.EXTERNAL_INPUT else "unknown-length data"
    return site.finding(
        UNBOUNDED_COPY,
        f"{site.callee}() copies {origin} '{src.text}' into '{dest.text}' "
        f"(capacity {capacity}) with no length limit",
        dest.text,
    )


def check_unbounded_format(site: CallSite) -> Optional[Finding]:
    """sprintf-style formatting into a fixed buffer"""
    if site.spec is None or site.spec.api_class != ApiClass.FORMAT:
        return None
    dest = site.arg(site.spec.dest_arg)
    if dest is None or not dest.capacity.is_known:
        return None
    return site.finding(
        UNBOUNDED_FORMAT,
        f"{site.callee}() formats into '{dest.text}' (capacity {dest.capacity}) "
        f"without a size limit; use snprintf()",
        dest.text,
    )


def check_format_string(site: CallSite) -> Optional[Finding]:
    """Format-string argument that is not a literal"""
    if site.spec is None or site.spec.format_arg is None:
        return None
    fmt = site.arg(site.spec.format_arg)
    if fmt is None or fmt.is_literal or fmt.taint == TaintLabel.LITERAL:
        return None
    return site.finding(
        FORMAT_STRING_INJECTION,
        f"format string of {site.callee}() comes from '{fmt.text}' "
        f"({fmt.taint.value.replace('_', ' ')}), not a literal",
        fmt.text,
    )


# %[flags][*][width][length]conversion, with %% skipped
_CONVERSION = re.compile(r"%%|%(\*)?(\d+)?(?:hh|h|ll|l|L|j|z|t|m)?([a-zA-Z\[])")


def unbounded_conversions(fmt: str) -> List[str]:
    """scanf conversions that store a string with no field width"""
    result = []
    for m in _CONVERSION.finditer(fmt):
        if m.group(0) == "%%":
            continue
        suppressed, width, conv = m.groups()
        if conv in ("s", "[") and not suppressed and not width:
            result.append(m.group(0))
    return result


def check_dangerous_input(site: CallSite) -> Optional[Finding]:
    """Input API with no caller-supplied bound"""
    if site.spec is not None and site.spec.api_class == ApiClass.UNBOUNDED_INPUT:
        dest = site.arg(site.spec.dest_arg)
        target = f" into '{dest.text}'" if dest else ""
        return site.finding(
            DANGEROUS_INPUT_FUNCTION,
            f"{site.callee}() reads input{target} with no length limit",
            dest.text if dest else "",
        )
    if site.callee in SCANF_FAMILY:
        fmt = site.arg(SCANF_FAMILY[site.callee])
        if fmt is None or fmt.literal is None:
            return None
        conversions = unbounded_conversions(fmt.literal)
        if conversions:
            return site.finding(
                DANGEROUS_INPUT_FUNCTION,
                f"{site.callee}() conversion '{conversions[0]}' has no field width",
            )
    return None


def check_length_argument(site: CallSite) -> Optional[Finding]:
    """Constant length argument larger than the destination"""
    if site.spec is None or site.spec.length_arg is None:
        return None
    if site.callee in ("strncat", "strlcat"):
        return None
    dest = site.arg(site.spec.dest_arg)
    length = site.arg(site.spec.length_arg)
    if dest is None or length is None or length.constant is None:
        return None
    if not dest.byte_capacity.is_known:
        return None
    if length.constant > dest.byte_capacity.value:
        return site.finding(
            OVERSIZED_LENGTH_ARGUMENT,
            f"{site.callee}() length {length.constant} exceeds '{dest.text}' "
            f"size {dest.byte_capacity}",
            dest.text,
        )
    return None


def default_registry() -> RuleRegistry:
    """Registry with the built-in C rules"""
    registry = RuleRegistry()
    registry.register(UNBOUNDED_COPY, ["strcpy", "strcat", "wcscpy", "wcscat", "stpcpy"],
                      check_unbounded_copy)
    registry.register(UNBOUNDED_FORMAT, ["sprintf", "vsprintf"], check_unbounded_format)
    registry.register(FORMAT_STRING_INJECTION, ["*printf", "syslog", "*scanf"], check_format_string)
    registry.register(DANGEROUS_INPUT_FUNCTION, ["gets", "getwd", "_getws", "scanf", "fscanf", "sscanf"],
                      check_dangerous_input)
    registry.register(OVERSIZED_LENGTH_ARGUMENT,
                      ["strncpy", "strlcpy", "memcpy", "memmove", "memset",
                       "fgets", "read", "recv", "snprintf", "vsnprintf"],
                      check_length_argument)
    return registry
