"""
Analysis driver.

FunctionAnalyzer walks one function's structured body. It keeps a list of
path states (SymbolTracker instances): branches fork the list, joins
deduplicate it, and a `return` closes a state after checking it for leaks.
Loops are explored for zero iterations and one iteration; range checks
inside the loop cover the remaining iterations symbolically.

AnalysisEngine runs one FunctionAnalyzer per function on a thread pool and
merges the results in input order, so a run's output does not depend on
which worker finished first.
"""

import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from cguard.config import AnalysisConfig
from cguard.errors import ParseInputError
from cguard.ir.statements import Stmt, If, Loop, LoopKind, Switch, Return, Break, Continue
from cguard.ir.types import Exp, Location
from cguard.ir.unit import FunctionUnit
from cguard.reporter import AnalysisFailure, Finding, FindingReporter
from .facts import LEAKED_ALLOCATION
from .rules import RuleRegistry, default_registry, make_finding
from .tracker import AnalysisContext, SymbolTracker


@dataclass
class _Flow:
    """Path states leaving a statement list, by how they left"""
    normal: List[SymbolTracker] = field(default_factory=list)
    breaks: List[SymbolTracker] = field(default_factory=list)
    continues: List[SymbolTracker] = field(default_factory=list)


class FunctionAnalyzer:
    """
    Analyzes a single function.

    Usage:
        analyzer = FunctionAnalyzer(unit, default_registry(), AnalysisConfig())
        findings = analyzer.analyze()
    """

    def __init__(self, unit: FunctionUnit, registry: RuleRegistry = None,
                 config: AnalysisConfig = None):
        self.unit = unit
        self.registry = registry or default_registry()
        self.config = config or AnalysisConfig()
        self.ctx: Optional[AnalysisContext] = None

    def analyze(self) -> List[Finding]:
        """
        Run the analysis.

        Raises:
            ParseInputError: if the unit is malformed
        """
        self.unit.validate()
        self.ctx = AnalysisContext(self.unit, self.registry,
                                   self.config.solver_timeout_ms, self.config.verbose)
        flow = self._block(self.unit.body, [SymbolTracker.for_unit(self.ctx)])
        for state in flow.normal:
            self._check_exit(state, self.unit.exit_loc)
        return self.ctx.findings()

    # -------------------------------------------------------------------------
    # Statement walk
    # -------------------------------------------------------------------------

    def _block(self, stmts: List[Stmt], states: List[SymbolTracker]) -> _Flow:
        flow = _Flow(states)
        for stmt in stmts:
            if not flow.normal:
                break
            step = self._stmt(stmt, flow.normal)
            flow.normal = self._merge(step.normal)
            flow.breaks.extend(step.breaks)
            flow.continues.extend(step.continues)
        return flow

    def _stmt(self, stmt: Stmt, states: List[SymbolTracker]) -> _Flow:
        if isinstance(stmt, If):
            return self._if(stmt, states)
        if isinstance(stmt, Loop):
            return self._loop(stmt, states)
        if isinstance(stmt, Switch):
            return self._switch(stmt, states)
        if isinstance(stmt, Return):
            for state in states:
                state.observe(stmt)
                self._check_exit(state, stmt.loc)
            return _Flow()
        if isinstance(stmt, Break):
            return _Flow(breaks=list(states))
        if isinstance(stmt, Continue):
            return _Flow(continues=list(states))
        for state in states:
            state.observe(stmt)
        return _Flow(states)

    def _if(self, stmt: If, states: List[SymbolTracker]) -> _Flow:
        for state in states:
            state.evaluate(stmt.condition, stmt.loc)
        then_flow = self._block(stmt.then_body, self._branch(states, stmt.condition, True))
        else_flow = self._block(stmt.else_body, self._branch(states, stmt.condition, False))
        return _Flow(
            then_flow.normal + else_flow.normal,
            then_flow.breaks + else_flow.breaks,
            then_flow.continues + else_flow.continues,
        )

    def _loop(self, loop: Loop, states: List[SymbolTracker]) -> _Flow:
        init = self._block(loop.init, states)
        entering = init.normal
        for state in entering:
            state.enter_loop(loop)

        if loop.kind == LoopKind.DO_WHILE:
            first, skipped = entering, []
        else:
            if loop.condition is not None:
                for state in entering:
                    state.evaluate(loop.condition, loop.loc)
            first = self._branch(entering, loop.condition, True)
            skipped = self._branch(entering, loop.condition, False)

        body = self._block(loop.body, first)
        after = self._block(loop.update, body.normal + body.continues).normal
        if loop.kind == LoopKind.DO_WHILE and loop.condition is not None:
            for state in after:
                state.evaluate(loop.condition, loop.loc)

        exits = skipped + self._branch(after, loop.condition, False) + body.breaks
        for state in exits:
            state.leave_loop()
        return _Flow(exits)

    def _switch(self, stmt: Switch, states: List[SymbolTracker]) -> _Flow:
        for state in states:
            state.evaluate(stmt.subject, stmt.loc)
        exits: List[SymbolTracker] = []
        continues: List[SymbolTracker] = []
        falling: List[SymbolTracker] = []
        for case in stmt.cases:
            flow = self._block(case.body, [s.fork() for s in states] + falling)
            falling = flow.normal
            exits.extend(flow.breaks)
            continues.extend(flow.continues)
        exits.extend(falling)
        if not any(case.value is None for case in stmt.cases):
            exits.extend(s.fork() for s in states)
        return _Flow(exits, continues=continues)

    def _branch(self, states: List[SymbolTracker], condition: Optional[Exp],
                truth: bool) -> List[SymbolTracker]:
        """States that can take the given side of condition, refined"""
        if condition is None:
            return [s.fork() for s in states] if truth else []
        result = []
        for state in states:
            value = self.ctx.evaluator.try_constant(condition, state.table)
            if value is not None and bool(value) != truth:
                continue
            branch = state.fork()
            if value is None:
                branch.assume(condition, truth)
            result.append(branch)
        return result

    def _merge(self, states: List[SymbolTracker]) -> List[SymbolTracker]:
        seen = set()
        unique = []
        for state in states:
            sig = state.signature()
            if sig in seen:
                continue
            seen.add(sig)
            unique.append(state)
        limit = self.config.max_paths
        if len(unique) > limit:
            if self.config.verbose:
                print(f"[Engine] {self.unit.name}: {len(unique)} paths, keeping {limit}",
                      file=sys.stderr)
            unique = unique[:limit]
        return unique

    def _check_exit(self, state: SymbolTracker, loc: Location) -> None:
        for name, fact in state.open_allocations():
            line = f"line {fact.allocated_at.line}" if fact.allocated_at else "an earlier line"
            self.ctx.emit(make_finding(
                LEAKED_ALLOCATION, loc,
                f"'{name}' allocated at {line} is not freed before the function returns",
                self.unit.name, name,
            ))


@dataclass
class AnalysisRun:
    """Result of analyzing a batch of functions"""
    findings: List[Finding] = field(default_factory=list)
    failures: List[AnalysisFailure] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    by_function: Dict[str, List[Finding]] = field(default_factory=dict)
    reporter: FindingReporter = field(default_factory=FindingReporter)


class AnalysisEngine:
    """
    Runs function analyses concurrently.

    Each function gets its own fact tables, evaluator and solver context;
    the only shared objects are the read-only rule registry and the final
    reporter, which is filled after all workers finish.

    Usage:
        engine = AnalysisEngine(AnalysisConfig(max_workers=4))
        run = engine.analyze(translation_unit.functions)
        for finding in run.findings:
            print(finding)
    """

    def __init__(self, config: AnalysisConfig = None, registry: RuleRegistry = None):
        self.config = config or AnalysisConfig()
        self.registry = registry or default_registry()

    def analyze_unit(self, unit: FunctionUnit) -> List[Finding]:
        return FunctionAnalyzer(unit, self.registry, self.config).analyze()

    def analyze(self, units: Iterable[FunctionUnit],
                cancel_event: Optional[threading.Event] = None) -> AnalysisRun:
        """
        Analyze units and merge their findings.

        A malformed unit becomes an AnalysisFailure and does not affect the
        others. Once cancel_event is set, units that have not started are
        skipped and listed in AnalysisRun.cancelled; findings from units that
        completed are kept.
        """
        units = list(units)
        slots: List[Union[List[Finding], AnalysisFailure, None]] = [None] * len(units)

        def run(position: int, unit: FunctionUnit):
            if cancel_event is not None and cancel_event.is_set():
                return position, None
            self._log(f"analyzing {unit.name} ({unit.loc})")
            try:
                return position, self.analyze_unit(unit)
            except ParseInputError as e:
                return position, AnalysisFailure(e.unit, e.reason, e.location)
            except Exception as e:
                # recorded against this unit only
                return position, AnalysisFailure(
                    unit.name, f"{type(e).__name__}: {e}", unit.loc)

        if units:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                futures = [pool.submit(run, i, u) for i, u in enumerate(units)]
                for future in as_completed(futures):
                    position, result = future.result()
                    slots[position] = result

        result = AnalysisRun()
        for unit, outcome in zip(units, slots):
            if outcome is None:
                result.cancelled.append(unit.name)
            elif isinstance(outcome, AnalysisFailure):
                self._log(f"skipped {outcome}")
                result.reporter.record_failure(outcome)
            else:
                result.reporter.extend(outcome)
                result.by_function.setdefault(unit.name, []).extend(outcome)
        result.findings = result.reporter.findings()
        result.failures = result.reporter.failures()
        self._log(f"{len(result.findings)} finding(s) in {len(units)} function(s)")
        return result

    def _log(self, message: str) -> None:
        if self.config.verbose:
            print(f"[Engine] {message}", file=sys.stderr)
