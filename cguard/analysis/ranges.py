"""
Array-index range checking.

Constant indices are compared directly against the declared capacity.
Indices that depend on loop variables are checked with z3: the enclosing
loop conditions, the loop variables' starting values and the branch guards
on the current path become integer constraints, and the checker asks whether
the index can leave [0, capacity). A loop whose condition is `i <= 50` over
`int data[50]` lets i reach 50, so the query is satisfiable and the loop is
flagged; `i < 50` makes it unsatisfiable.

Each RangeChecker owns a private z3.Context, so checkers running on
different threads never share solver state.
"""

import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import z3

from cguard.ir.statements import Assign, Loop, LoopKind, walk
from cguard.ir.types import (
    Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, strip_casts,
)
from .evaluator import Evaluator
from .facts import Capacity, IndexFact, IndexKind

# A variable that can exceed this magnitude is treated as unbounded
_UNBOUNDED = 10 ** 9

_COMPARISONS = {"<", "<=", ">", ">=", "==", "!="}


@dataclass
class LoopFrame:
    """
    An enclosing loop on the current path.

    variables are the names assigned anywhere in the loop; entry holds the
    values those variables had when the loop was entered, when known.
    """
    loop: Loop
    variables: frozenset
    entry: Dict[str, int] = field(default_factory=dict)

    def step_of(self, name: str) -> Optional[int]:
        """Signed constant step of name, if it is its only update in the loop"""
        writes = [s for s in walk(self.loop.body + self.loop.update) if name in s.get_written_vars()]
        if len(writes) != 1 or not isinstance(writes[0], Assign):
            return None
        stmt = writes[0]
        if not isinstance(stmt.target, ExpVar):
            return None
        value = strip_casts(stmt.value)
        if (isinstance(value, ExpBinOp) and value.op in ("+", "-")
                and isinstance(value.left, ExpVar) and value.left.name == name
                and isinstance(value.right, ExpConst) and isinstance(value.right.value, int)):
            return value.right.value if value.op == "+" else -value.right.value
        return None


@dataclass(frozen=True)
class RangeVerdict:
    """Outcome of one range query"""
    index: IndexFact
    out_of_bounds: bool
    witness: Optional[int] = None
    loop: Optional[Loop] = None


class RangeChecker:
    """
    Validates index expressions against capacities.

    Usage:
        checker = RangeChecker(evaluator, timeout_ms=2000)
        verdict = checker.check(access.index, capacity, table, loops, guards)
    """

    def __init__(self, evaluator: Evaluator, timeout_ms: int = 2000, verbose: bool = False):
        self.evaluator = evaluator
        self.timeout_ms = timeout_ms
        self.verbose = verbose
        self._ctx = z3.Context()
        self._cache: Dict[tuple, RangeVerdict] = {}

    def classify(self, index: Exp, capacity: Capacity, table,
                 loops: List[LoopFrame]) -> IndexFact:
        value = self.evaluator.try_constant(index, table)
        if value is not None:
            return IndexFact.constant(value, capacity)
        frame = self._governing_loop(index, loops)
        if frame is not None and frame.loop.condition is not None:
            cond = strip_casts(frame.loop.condition)
            if isinstance(cond, ExpBinOp) and cond.op in _COMPARISONS:
                return IndexFact.loop_bound(cond.op, cond.right)
        return IndexFact.unknown()

    def check(self, index: Exp, capacity: Capacity, table, loops: List[LoopFrame],
              guards: List[Exp]) -> Optional[RangeVerdict]:
        """
        Check one index against a capacity.

        Returns None when the capacity is unknown or the index cannot be
        classified; otherwise a verdict saying whether the index can leave
        the buffer.
        """
        if not capacity.is_known:
            return None
        fact = self.classify(index, capacity, table, loops)
        if fact.kind == IndexKind.CONSTANT_OUT_OF_BOUNDS:
            return RangeVerdict(fact, True, fact.value)
        if fact.kind == IndexKind.CONSTANT_IN_BOUNDS:
            return RangeVerdict(fact, False, fact.value)
        if fact.value is not None:
            return None

        frame = self._governing_loop(index, loops)
        if frame is None:
            return None
        key = (str(index), capacity.value,
               tuple((id(f.loop), tuple(sorted(f.entry.items()))) for f in loops),
               tuple(str(g) for g in guards),
               tuple(sorted(table.scalars.items())))
        if key in self._cache:
            return self._cache[key]
        verdict = self._solve(index, capacity.value, table, loops, guards, fact, frame)
        self._cache[key] = verdict
        return verdict

    # -------------------------------------------------------------------------
    # z3 encoding
    # -------------------------------------------------------------------------

    def _governing_loop(self, index: Exp, loops: List[LoopFrame]) -> Optional[LoopFrame]:
        """Innermost enclosing loop that assigns a variable used in index"""
        names = index.free_vars()
        for frame in reversed(loops):
            if names & frame.variables:
                return frame
        return None

    def _solve(self, index: Exp, capacity: int, table, loops: List[LoopFrame],
               guards: List[Exp], fact: IndexFact, frame: LoopFrame) -> Optional[RangeVerdict]:
        loop_vars = set()
        for f in loops:
            loop_vars |= f.variables

        term = self._term(index, table, loop_vars)
        if term is None:
            return None

        constraints = []
        for f in loops:
            if f.loop.condition is not None and f.loop.kind != LoopKind.DO_WHILE:
                c = self._formula(self._ordered_condition(f, table), table, loop_vars)
                if c is not None:
                    constraints.append(c)
            for name, start in f.entry.items():
                step = f.step_of(name)
                if step is None or step == 0:
                    continue
                v = z3.Int(name, self._ctx)
                constraints.append(v >= start if step > 0 else v <= start)
        for guard in guards:
            c = self._formula(guard, table, loop_vars)
            if c is not None:
                constraints.append(c)

        above = self._witness(constraints, term, term >= capacity, term >= _UNBOUNDED)
        if above is not None:
            self._log(f"index {index} can reach {above} (capacity {capacity})")
            return RangeVerdict(fact, True, above, frame.loop)
        below = self._witness(constraints, term, term < 0, term <= -_UNBOUNDED)
        if below is not None:
            self._log(f"index {index} can reach {below} (capacity {capacity})")
            return RangeVerdict(fact, True, below, frame.loop)
        return RangeVerdict(fact, False, None, frame.loop)

    def _witness(self, constraints, term, violation, unbounded) -> Optional[int]:
        """
        A value of term satisfying violation, or None.

        Returns None when the violation is unsatisfiable, when the solver
        gives up, and when term is unbounded in that direction (no usable
        bound was found, so the checker abstains).
        """
        solver = z3.Solver(ctx=self._ctx)
        solver.set("timeout", self.timeout_ms)
        solver.add(*constraints)
        solver.add(violation)
        if solver.check() != z3.sat:
            return None
        model = solver.model()
        witness = model.eval(term, model_completion=True)

        solver = z3.Solver(ctx=self._ctx)
        solver.set("timeout", self.timeout_ms)
        solver.add(*constraints)
        solver.add(unbounded)
        if solver.check() != z3.unsat:
            return None
        return witness.as_long()

    def _ordered_condition(self, frame: LoopFrame, table) -> Exp:
        """
        Loop condition with `i != b` rewritten as an ordering.

        A counter starting at or below b and stepping up runs while i < b;
        one starting at or above b and stepping down runs while i > b.
        Anything else is returned unchanged.
        """
        cond = strip_casts(frame.loop.condition)
        if not (isinstance(cond, ExpBinOp) and cond.op == "!="):
            return cond
        counter, bound = strip_casts(cond.left), cond.right
        if not isinstance(counter, ExpVar):
            counter, bound = strip_casts(cond.right), cond.left
        if not isinstance(counter, ExpVar) or counter.name not in frame.entry:
            return cond
        limit = self.evaluator.try_constant(bound, table)
        step = frame.step_of(counter.name)
        start = frame.entry[counter.name]
        if limit is None or not step:
            return cond
        if step > 0 and start <= limit:
            return ExpBinOp("<", counter, bound)
        if step < 0 and start >= limit:
            return ExpBinOp(">", counter, bound)
        return cond

    def _term(self, exp: Exp, table, loop_vars: set) -> Optional[z3.ArithRef]:
        exp = strip_casts(exp)
        if isinstance(exp, ExpVar) and exp.name in loop_vars:
            return z3.Int(exp.name, self._ctx)
        if not exp.free_vars() & loop_vars:
            value = self.evaluator.try_constant(exp, table)
            if value is not None:
                return z3.IntVal(value, self._ctx)
        if isinstance(exp, ExpUnOp) and exp.op == "-":
            inner = self._term(exp.operand, table, loop_vars)
            return -inner if inner is not None else None
        if isinstance(exp, ExpBinOp) and exp.op in ("+", "-", "*"):
            left = self._term(exp.left, table, loop_vars)
            right = self._term(exp.right, table, loop_vars)
            if left is None or right is None:
                return None
            if exp.op == "+":
                return left + right
            if exp.op == "-":
                return left - right
            return left * right
        return None

    def _formula(self, exp: Exp, table, loop_vars: set,
                 negated: bool = False) -> Optional[z3.BoolRef]:
        """
        z3 encoding of a condition, or None.

        An operand that cannot be encoded may be dropped only where that
        weakens the final constraint: from a conjunction in positive
        position, or from a disjunction under an odd number of negations.
        """
        exp = strip_casts(exp)
        if isinstance(exp, ExpBinOp) and exp.op in _COMPARISONS:
            left = self._term(exp.left, table, loop_vars)
            right = self._term(exp.right, table, loop_vars)
            if left is None or right is None:
                return None
            return {
                "<": lambda: left < right,
                "<=": lambda: left <= right,
                ">": lambda: left > right,
                ">=": lambda: left >= right,
                "==": lambda: left == right,
                "!=": lambda: left != right,
            }[exp.op]()
        if isinstance(exp, ExpBinOp) and exp.op in ("&&", "||"):
            conjunction = exp.op == "&&"
            left = self._formula(exp.left, table, loop_vars, negated)
            right = self._formula(exp.right, table, loop_vars, negated)
            if left is not None and right is not None:
                return z3.And(left, right) if conjunction else z3.Or(left, right)
            if conjunction == negated:
                return None
            return left if left is not None else right
        if isinstance(exp, ExpUnOp) and exp.op == "!":
            inner = self._formula(exp.operand, table, loop_vars, not negated)
            return z3.Not(inner) if inner is not None else None
        return None

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[Ranges] {message}", file=sys.stderr)
