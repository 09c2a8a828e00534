"""
Symbol and lifetime tracking.

A FactTable maps names (and lvalue paths such as "user.name") to facts. It is
a plain value: the analyzer gives every path its own copy and a fresh table
is built for every function, so nothing is shared between analyses.

SymbolTracker owns one FactTable and updates it statement by statement. As
it goes it:
- records buffers for array declarations and allocations
- drives the pointer lifecycle state machine (allocate, free, use, escape)
- propagates taint and literal lengths through assignments and calls
- hands every call site to the rule engine and every index to the range
  checker
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Union

from cguard.ir.decls import Declaration, DeclKind
from cguard.ir.unit import FunctionUnit
from cguard.ir.statements import (
    Stmt, Declare, Assign, Call, Eval, Return, Loop, written_in,
)
from cguard.ir.types import (
    Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, ExpFieldAccess, ExpIndex,
    ExpCall, ExpSizeof, ExpTernary, ExpCast, Location, root_var, strip_casts,
)
from cguard.reporter import Finding
from cguard.specs.c_specs import ApiClass, ApiSpec, SCANF_FAMILY, get_spec
from .evaluator import Evaluator, TypeView, literal_fact, normalize_type, path_of
from .facts import (
    Buffer, BufferOrigin, Capacity, PointerEvent, PointerFact, PointerState,
    StringLiteralFact, TaintLabel, transition,
    USE_AFTER_FREE, DOUBLE_FREE, LEAKED_ALLOCATION, UNCHECKED_ALLOCATION_USE,
    ARRAY_INDEX_OUT_OF_BOUNDS, LOOP_INDEX_OUT_OF_BOUNDS,
)
from .ranges import LoopFrame, RangeChecker
from .rules import ArgFacts, CallSite, RuleRegistry, make_finding


@dataclass
class FactTable:
    """Per-path facts for one function"""
    decls: Dict[str, Declaration] = field(default_factory=dict)
    buffers: Dict[str, Buffer] = field(default_factory=dict)
    pointers: Dict[str, PointerFact] = field(default_factory=dict)
    taint: Dict[str, TaintLabel] = field(default_factory=dict)
    literals: Dict[str, StringLiteralFact] = field(default_factory=dict)
    scalars: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> 'FactTable':
        return FactTable(
            decls=dict(self.decls),
            buffers=dict(self.buffers),
            pointers=dict(self.pointers),
            taint=dict(self.taint),
            literals=dict(self.literals),
            scalars=dict(self.scalars),
        )

    def lookup(self, name: str) -> Union[Buffer, PointerState, None]:
        """Pointer state for tracked pointers, else the buffer fact, else None"""
        if name in self.pointers:
            return self.pointers[name].state
        return self.buffers.get(name)

    def forget(self, key: str) -> None:
        """Drop every fact recorded for key and paths under it"""
        prefix_dot, prefix_idx = key + ".", key + "["
        for table in (self.buffers, self.taint, self.literals):
            for k in [k for k in table if k == key or k.startswith((prefix_dot, prefix_idx))]:
                del table[k]
        self.pointers.pop(key, None)
        self.scalars.pop(key, None)

    def signature(self) -> tuple:
        return (
            tuple(sorted(self.decls)),
            tuple(sorted(self.buffers.items())),
            tuple(sorted(self.pointers.items())),
            tuple(sorted((k, v.value) for k, v in self.taint.items())),
            tuple(sorted(self.literals.items())),
            tuple(sorted(self.scalars.items())),
        )


class AnalysisContext:
    """
    Everything shared by the path states of one function analysis.

    Findings are collected here, keyed by (rule id, location), so a defect
    reached along several paths is recorded once.
    """

    def __init__(self, unit: FunctionUnit, registry: RuleRegistry,
                 solver_timeout_ms: int = 2000, verbose: bool = False):
        self.unit = unit
        self.evaluator = Evaluator(unit.structs, unit.constants)
        self.registry = registry
        self.ranges = RangeChecker(self.evaluator, solver_timeout_ms, verbose)
        self.verbose = verbose
        self._findings: Dict[Tuple[str, Location], Finding] = {}

    @property
    def function(self) -> str:
        return self.unit.name

    def emit(self, finding: Finding) -> None:
        self._findings.setdefault(finding.key, finding)

    def findings(self) -> List[Finding]:
        return sorted(self._findings.values(), key=Finding.sort_key)


def _is_null(exp: Exp) -> bool:
    exp = strip_casts(exp)
    return isinstance(exp, ExpConst) and (exp.value is None or exp.value == 0)


def _line(loc: Optional[Location]) -> str:
    return f"line {loc.line}" if loc else "an earlier line"


class SymbolTracker:
    """
    Symbol and lifetime tracker for one path through a function.

    Usage:
        tracker = SymbolTracker.for_unit(ctx)
        tracker.observe(stmt)
        tracker.lookup("ptr")   # -> PointerState.FREED
    """

    def __init__(self, ctx: AnalysisContext, table: FactTable = None,
                 loops: List[LoopFrame] = None, guards: List[Exp] = None):
        self.ctx = ctx
        self.table = table or FactTable()
        self.loops = loops or []
        self.guards = guards or []

    @classmethod
    def for_unit(cls, ctx: AnalysisContext) -> 'SymbolTracker':
        """Fresh tracker with the unit's parameters seeded as external input"""
        tracker = cls(ctx)
        for param in ctx.unit.params:
            tracker.table.decls[param.name] = param
            tracker.table.taint[param.name] = TaintLabel.EXTERNAL_INPUT
            if param.kind in (DeclKind.POINTER, DeclKind.ARRAY):
                tracker.table.pointers[param.name] = PointerFact()
        return tracker

    def fork(self) -> 'SymbolTracker':
        return SymbolTracker(self.ctx, self.table.copy(), list(self.loops), list(self.guards))

    def lookup(self, name: str) -> Union[Buffer, PointerState, None]:
        return self.table.lookup(name)

    def signature(self) -> tuple:
        return (
            self.table.signature(),
            tuple(id(f.loop) for f in self.loops),
            tuple(str(g) for g in self.guards),
        )

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def observe(self, stmt: Stmt) -> None:
        """Apply one straight-line statement to the fact table"""
        if isinstance(stmt, Declare):
            self._declare(stmt)
        elif isinstance(stmt, Assign):
            self._assign(stmt.target, stmt.value, stmt.loc)
        elif isinstance(stmt, Call):
            self._call(ExpCall(stmt.func, list(stmt.args)), stmt.ret, stmt.loc)
        elif isinstance(stmt, Eval):
            self.evaluate(stmt.exp, stmt.loc)
        elif isinstance(stmt, Return):
            self._return(stmt)

    def evaluate(self, exp: Exp, loc: Location) -> None:
        """Process the uses and nested calls of an expression"""
        self._scan(exp, loc)
        for nested in exp.calls():
            self._call(nested, None, loc)

    def assume(self, condition: Exp, truth: bool) -> None:
        """Record that condition evaluated to truth on this path"""
        self.guards.append(condition if truth else ExpUnOp("!", condition))
        self._refine(condition, truth)

    def enter_loop(self, loop: Loop) -> LoopFrame:
        modified = frozenset(written_in(loop.body + loop.update))
        entry = {v: self.table.scalars[v] for v in modified if v in self.table.scalars}
        for name in modified:
            self.table.scalars.pop(name, None)
            self._forget_guards(name)
        frame = LoopFrame(loop, modified, entry)
        self.loops.append(frame)
        return frame

    def leave_loop(self) -> None:
        self.loops.pop()

    def open_allocations(self) -> List[Tuple[str, PointerFact]]:
        """Pointers still owning an allocation"""
        return sorted((name, fact) for name, fact in self.table.pointers.items()
                      if fact.state == PointerState.ALLOCATED)

    def _declare(self, stmt: Declare) -> None:
        decl = stmt.decl
        table = self.table
        table.forget(decl.name)
        table.decls[decl.name] = decl
        table.taint[decl.name] = TaintLabel.UNKNOWN
        self._forget_guards(decl.name)
        ev = self.ctx.evaluator

        if decl.kind == DeclKind.ARRAY:
            dims = ev.dims_of(decl.dims, table)
            first = dims[0] if dims else None
            capacity = Capacity.known(first) if first is not None and first >= 0 else Capacity.unknown()
            elem = ev.sizeof_view(TypeView(normalize_type(decl.base_type), dims[1:]))
            table.buffers[decl.name] = Buffer(
                decl.name, BufferOrigin.FIXED_ARRAY, capacity, elem,
                size_text=str(decl.dims[0]) if decl.dims else "",
                declared_at=stmt.loc,
            )
            if stmt.init is not None:
                self.evaluate(stmt.init, stmt.loc)
                lit = self.literal_of(stmt.init)
                if lit is not None:
                    table.literals[decl.name] = lit
                    table.taint[decl.name] = TaintLabel.LITERAL
            return

        if decl.kind == DeclKind.POINTER:
            table.pointers[decl.name] = PointerFact()
        if stmt.init is not None:
            self._assign(ExpVar(decl.name), stmt.init, stmt.loc)

    def _assign(self, target: Exp, value: Exp, loc: Location) -> None:
        if not isinstance(target, ExpVar):
            self._scan(target, loc)
        rhs = strip_casts(value)
        if isinstance(rhs, ExpCall):
            self._call(rhs, target, loc)
            return
        self.evaluate(value, loc)
        self._bind(target, value, loc)

    def _bind(self, target: Exp, value: Exp, loc: Location) -> None:
        """target = value for a right-hand side that is not a call"""
        table = self.table
        key = path_of(target)
        rhs = strip_casts(value)
        if key is not None:
            table.taint[key] = self.taint_of(value)
            lit = self.literal_of(value)
            if lit is not None:
                table.literals[key] = lit
            else:
                table.literals.pop(key, None)

        source = rhs.name if isinstance(rhs, ExpVar) else None
        if not isinstance(target, ExpVar):
            # stored somewhere this function does not own
            if source in table.pointers:
                self._pointer_event(source, PointerEvent.ESCAPE, loc)
            return

        name = target.name
        self._forget_guards(name)
        value_const = self.ctx.evaluator.try_constant(value, table)
        if value_const is not None:
            table.scalars[name] = value_const
        else:
            table.scalars.pop(name, None)

        if name not in table.decls:
            if source in table.pointers:
                self._pointer_event(source, PointerEvent.ESCAPE, loc)
            return

        if name in table.pointers:
            if _is_null(rhs):
                self._pointer_event(name, PointerEvent.NULLIFY, loc)
            elif name not in value.free_vars():
                self._pointer_event(name, PointerEvent.REASSIGN, loc)
                if source in table.pointers and source != name:
                    if table.pointers[source].state == PointerState.ALLOCATED:
                        # two names for one allocation: neither is tracked further
                        self._pointer_event(source, PointerEvent.ESCAPE, loc)
                        table.pointers[name] = PointerFact(PointerState.ESCAPED)
            alias = self.ctx.evaluator.buffer_for(rhs, table) if source else None
            if alias is not None:
                table.buffers[name] = replace(alias, name=name)
            elif name not in value.free_vars():
                table.buffers.pop(name, None)

    def _return(self, stmt: Return) -> None:
        if stmt.value is None:
            return
        self.evaluate(stmt.value, stmt.loc)
        name = self._pointer_arg(stmt.value)
        if name in self.table.pointers:
            self._pointer_event(name, PointerEvent.ESCAPE, stmt.loc)

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    def _call(self, call: ExpCall, ret: Optional[Exp], loc: Location) -> None:
        spec = get_spec(call.func)
        args = call.args

        for position, arg in enumerate(args):
            self._scan(arg, loc)
            if spec is not None and spec.is_deallocator and position == 0:
                continue
            name = self._pointer_arg(arg)
            if name is not None:
                # passing a pointer on is not a dereference here
                self._use(name, loc, deref=False)

        site = self.resolve_site(call, spec, loc)
        for finding in self.ctx.registry.evaluate(site):
            self.ctx.emit(finding)

        if spec is None:
            self._unknown_call_effects(args, loc)
        elif spec.is_deallocator:
            name = self._pointer_arg(args[0]) if args else None
            if name is not None:
                self._pointer_event(name, PointerEvent.FREE, loc)
        elif spec.is_source:
            self._input_effects(call, spec)
        elif spec.api_class in (ApiClass.COPY, ApiClass.BOUNDED_COPY):
            self._copy_effects(call, spec)
        elif spec.api_class in (ApiClass.FORMAT, ApiClass.BOUNDED_FORMAT):
            self._format_effects(call, spec)

        if ret is not None:
            self._bind_result(call, spec, ret, loc)

    def resolve_site(self, call: ExpCall, spec: Optional[ApiSpec], loc: Location) -> CallSite:
        ev = self.ctx.evaluator
        resolved = []
        for arg in call.args:
            bare = strip_casts(arg)
            lit = self.literal_of(arg)
            is_string = isinstance(bare, ExpConst) and bare.is_string
            resolved.append(ArgFacts(
                exp=arg,
                text=str(arg),
                taint=self.taint_of(arg),
                capacity=ev.capacity_of_exp(arg, self.table),
                byte_capacity=ev.byte_capacity_of_exp(arg, self.table),
                literal_length=lit.length if lit else None,
                literal=bare.value if is_string else None,
                constant=None if is_string else ev.try_constant(arg, self.table),
            ))
        return CallSite(call.func, spec, resolved, loc, self.ctx.function)

    def _unknown_call_effects(self, args: List[Exp], loc: Location) -> None:
        for arg in args:
            bare = strip_casts(arg)
            if isinstance(bare, ExpUnOp) and bare.op == "&":
                bare = strip_casts(bare.operand)
            if isinstance(bare, ExpVar) and bare.name in self.table.pointers:
                self._pointer_event(bare.name, PointerEvent.ESCAPE, loc)
            key = path_of(bare)
            if key is not None and (key in self.table.buffers or key not in self.table.decls):
                self.table.taint[key] = TaintLabel.UNKNOWN
                self.table.literals.pop(key, None)
            if isinstance(bare, ExpVar):
                self.table.scalars.pop(bare.name, None)

    def _input_effects(self, call: ExpCall, spec: ApiSpec) -> None:
        if call.func in SCANF_FAMILY:
            targets = call.args[SCANF_FAMILY[call.func] + 1:]
        else:
            targets = [call.args[spec.dest_arg]] if spec.dest_arg is not None and spec.dest_arg < len(call.args) else []
        for target in targets:
            bare = strip_casts(target)
            if isinstance(bare, ExpUnOp) and bare.op == "&":
                bare = bare.operand
            key = path_of(bare)
            if key is None:
                continue
            self.table.taint[key] = TaintLabel.EXTERNAL_INPUT
            self.table.literals.pop(key, None)
            self.table.scalars.pop(key, None)

    def _copy_effects(self, call: ExpCall, spec: ApiSpec) -> None:
        if spec.dest_arg is None or spec.dest_arg >= len(call.args):
            return
        key = path_of(call.args[spec.dest_arg])
        if key is None:
            return
        src = call.args[spec.src_arg] if spec.src_arg is not None and spec.src_arg < len(call.args) else None
        if src is None:
            self.table.taint[key] = TaintLabel.LITERAL
            self.table.literals.pop(key, None)
            return
        taint = self.taint_of(src)
        lit = self.literal_of(src) if spec.api_class == ApiClass.COPY else None
        if call.func in ("strcat", "wcscat"):
            taint = taint.join(self.table.taint.get(key, TaintLabel.UNKNOWN))
            before = self.table.literals.get(key)
            lit = StringLiteralFact(before.length + lit.length - 1) if before and lit else None
        self.table.taint[key] = taint
        if lit is not None:
            self.table.literals[key] = lit
        else:
            self.table.literals.pop(key, None)

    def _format_effects(self, call: ExpCall, spec: ApiSpec) -> None:
        if spec.dest_arg is None or spec.dest_arg >= len(call.args):
            return
        key = path_of(call.args[spec.dest_arg])
        if key is None:
            return
        taint = TaintLabel.LITERAL
        for arg in call.args[spec.format_arg:]:
            taint = taint.join(self.taint_of(arg))
        self.table.taint[key] = taint
        self.table.literals.pop(key, None)

    def _bind_result(self, call: ExpCall, spec: Optional[ApiSpec], ret: Exp, loc: Location) -> None:
        table = self.table
        ev = self.ctx.evaluator
        key = path_of(ret)
        name = ret.name if isinstance(ret, ExpVar) else None
        if name is not None:
            table.scalars.pop(name, None)
            self._forget_guards(name)
        tracked = name is not None and name in table.pointers and name in table.decls

        if spec is not None and spec.is_allocator:
            size = ev.allocation_size(call.args, spec.size_args, table)
            lit = None
            if call.func in ("strdup", "strndup") and call.args:
                lit = self.literal_of(call.args[0])
                if call.func == "strdup" and lit is not None:
                    size = lit.length
            elem = ev.element_size(ev.type_of(ret, table)) or 1
            capacity = Capacity.known(size // elem) if size is not None else Capacity.unknown()

            if tracked:
                resized = (spec.api_class == ApiClass.REALLOCATION and call.args
                           and name in call.args[0].free_vars())
                if resized:
                    table.pointers[name] = PointerFact(PointerState.ALLOCATED, allocated_at=loc,
                                                       may_be_null=spec.may_return_null)
                else:
                    if spec.api_class == ApiClass.REALLOCATION and call.args:
                        old = self._pointer_arg(call.args[0])
                        if old in table.pointers:
                            self._pointer_event(old, PointerEvent.ESCAPE, loc)
                    self._pointer_event(name, PointerEvent.ALLOCATE, loc)
                    table.pointers[name] = replace(table.pointers[name],
                                                   may_be_null=spec.may_return_null)
            if key is not None:
                table.buffers[key] = Buffer(key, BufferOrigin.HEAP_ALLOCATION, capacity, elem,
                                            size_text=", ".join(str(a) for a in call.args),
                                            declared_at=loc)
                if call.func in ("strdup", "strndup") and call.args:
                    table.taint[key] = self.taint_of(call.args[0])
                else:
                    table.taint[key] = TaintLabel.UNKNOWN
                if lit is not None:
                    table.literals[key] = lit
                else:
                    table.literals.pop(key, None)
            return

        if tracked and name not in call.free_vars():
            self._pointer_event(name, PointerEvent.REASSIGN, loc)
        if key is not None:
            table.buffers.pop(key, None)
            table.literals.pop(key, None)
            if spec is not None and spec.is_source:
                table.taint[key] = TaintLabel.EXTERNAL_INPUT
            else:
                table.taint[key] = TaintLabel.UNKNOWN

    # -------------------------------------------------------------------------
    # Uses and lifecycle events
    # -------------------------------------------------------------------------

    def _scan(self, exp: Exp, loc: Location) -> None:
        """Dereferences and indexing inside exp. Calls are handled by _call."""
        if isinstance(exp, (ExpSizeof, ExpCall, ExpConst, ExpVar)):
            return
        if isinstance(exp, ExpIndex):
            self._deref(exp.base, loc)
            self._check_index(exp, loc)
            self._scan(exp.base, loc)
            self._scan(exp.index, loc)
        elif isinstance(exp, ExpUnOp) and exp.op == "*":
            self._deref(exp.operand, loc)
            self._scan(exp.operand, loc)
        elif isinstance(exp, ExpUnOp) and exp.op == "&":
            operand = strip_casts(exp.operand)
            if isinstance(operand, ExpIndex):
                # &a[n] forms an address without reading a[n]
                self._scan(operand.base, loc)
                self._scan(operand.index, loc)
            else:
                self._scan(operand, loc)
        elif isinstance(exp, ExpFieldAccess):
            if exp.is_arrow:
                self._deref(exp.base, loc)
            self._scan(exp.base, loc)
        elif isinstance(exp, ExpUnOp):
            self._scan(exp.operand, loc)
        elif isinstance(exp, ExpBinOp):
            self._scan(exp.left, loc)
            self._scan(exp.right, loc)
        elif isinstance(exp, ExpCast):
            self._scan(exp.exp, loc)
        elif isinstance(exp, ExpTernary):
            self._scan(exp.condition, loc)
            self._scan(exp.true_exp, loc)
            self._scan(exp.false_exp, loc)

    def _deref(self, pointer: Exp, loc: Location) -> None:
        pointer = strip_casts(pointer)
        if isinstance(pointer, ExpBinOp) and pointer.op in ("+", "-"):
            pointer = strip_casts(pointer.left)
        if isinstance(pointer, ExpVar):
            self._use(pointer.name, loc, deref=True)

    def _pointer_arg(self, exp: Exp) -> Optional[str]:
        bare = strip_casts(exp)
        if isinstance(bare, ExpVar) and bare.name in self.table.pointers:
            return bare.name
        return None

    def _use(self, name: str, loc: Location, deref: bool) -> None:
        fact = self.table.pointers.get(name)
        if fact is None:
            return
        if (deref and fact.state == PointerState.ALLOCATED
                and fact.may_be_null and not fact.null_checked):
            self.ctx.emit(make_finding(
                UNCHECKED_ALLOCATION_USE, loc,
                f"'{name}' (allocated at {_line(fact.allocated_at)}) may be NULL "
                f"and is used without a null check",
                self.ctx.function, name,
            ))
        self._pointer_event(name, PointerEvent.USE, loc)

    def _pointer_event(self, name: str, event: PointerEvent, loc: Location) -> None:
        fact = self.table.pointers.get(name)
        if fact is None:
            return
        _, violated = transition(fact.state, event)
        if violated == USE_AFTER_FREE:
            message = f"'{name}' is used after being freed at {_line(fact.freed_at)}"
        elif violated == DOUBLE_FREE:
            message = f"'{name}' is freed again (first freed at {_line(fact.freed_at)})"
        elif violated == LEAKED_ALLOCATION:
            message = (f"'{name}' is overwritten while still owning the allocation "
                       f"from {_line(fact.allocated_at)}")
        else:
            message = None
        if message is not None:
            self.ctx.emit(make_finding(violated, loc, message, self.ctx.function, name))
        self.table.pointers[name] = fact.after(event, loc)

    def _check_index(self, access: ExpIndex, loc: Location) -> None:
        ev = self.ctx.evaluator
        capacity = ev.capacity_of_exp(access.base, self.table)
        verdict = self.ctx.ranges.check(access.index, capacity, self.table, self.loops, self.guards)
        if verdict is None or not verdict.out_of_bounds:
            return
        base = str(access.base)
        if verdict.loop is None:
            self.ctx.emit(make_finding(
                ARRAY_INDEX_OUT_OF_BOUNDS, loc,
                f"index {verdict.witness} is out of bounds for '{base}' (capacity {capacity})",
                self.ctx.function, base,
            ))
        else:
            self.ctx.emit(make_finding(
                LOOP_INDEX_OUT_OF_BOUNDS, verdict.loop.loc,
                f"loop condition '{verdict.loop.condition}' lets '{access}' reach index "
                f"{verdict.witness}, but '{base}' holds {capacity}",
                self.ctx.function, base,
            ))

    # -------------------------------------------------------------------------
    # Derived facts
    # -------------------------------------------------------------------------

    def taint_of(self, exp: Exp) -> TaintLabel:
        e = strip_casts(exp)
        if isinstance(e, (ExpConst, ExpSizeof)):
            return TaintLabel.LITERAL
        if isinstance(e, ExpVar):
            if e.name in self.ctx.evaluator.constants:
                return TaintLabel.LITERAL
            return self.table.taint.get(e.name, TaintLabel.UNKNOWN)
        if isinstance(e, (ExpFieldAccess, ExpIndex)) or (isinstance(e, ExpUnOp) and e.op == "*"):
            key = path_of(e)
            if key is not None and key in self.table.taint:
                return self.table.taint[key]
            root = root_var(e)
            return self.table.taint.get(root, TaintLabel.UNKNOWN) if root else TaintLabel.UNKNOWN
        if isinstance(e, ExpUnOp):
            return self.taint_of(e.operand)
        if isinstance(e, ExpBinOp):
            return self.taint_of(e.left).join(self.taint_of(e.right))
        if isinstance(e, ExpTernary):
            return self.taint_of(e.true_exp).join(self.taint_of(e.false_exp))
        if isinstance(e, ExpCall):
            spec = get_spec(e.func)
            if spec is not None and spec.is_source:
                return TaintLabel.EXTERNAL_INPUT
        return TaintLabel.UNKNOWN

    def literal_of(self, exp: Exp) -> Optional[StringLiteralFact]:
        """Literal length of exp, directly or through a variable holding one"""
        e = strip_casts(exp)
        fact = literal_fact(e)
        if fact is not None:
            return fact
        if isinstance(e, ExpTernary):
            a, b = self.literal_of(e.true_exp), self.literal_of(e.false_exp)
            if a is not None and b is not None:
                return a if a.length >= b.length else b
            return None
        key = path_of(e)
        return self.table.literals.get(key) if key is not None else None

    # -------------------------------------------------------------------------
    # Branch refinement
    # -------------------------------------------------------------------------

    def _refine(self, condition: Exp, truth: bool) -> None:
        c = strip_casts(condition)
        if isinstance(c, ExpUnOp) and c.op == "!":
            self._refine(c.operand, not truth)
        elif isinstance(c, ExpBinOp) and c.op == "&&":
            if truth:
                self._refine(c.left, True)
                self._refine(c.right, True)
        elif isinstance(c, ExpBinOp) and c.op == "||":
            if not truth:
                self._refine(c.left, False)
                self._refine(c.right, False)
        elif isinstance(c, ExpBinOp) and c.op in ("==", "!="):
            name = None
            if _is_null(c.right):
                name = self._pointer_arg(c.left)
            elif _is_null(c.left):
                name = self._pointer_arg(c.right)
            if name is not None:
                self._mark_null(name, (c.op == "==") == truth)
        elif isinstance(c, ExpVar) and c.name in self.table.pointers:
            self._mark_null(c.name, not truth)

    def _mark_null(self, name: str, is_null: bool) -> None:
        fact = self.table.pointers[name]
        if is_null:
            if fact.state == PointerState.ALLOCATED:
                # the allocation failed on this path; nothing is owned
                self.table.pointers[name] = PointerFact()
        else:
            self.table.pointers[name] = replace(fact, null_checked=True)

    def _forget_guards(self, name: str) -> None:
        if self.guards:
            self.guards = [g for g in self.guards if name not in g.free_vars()]
