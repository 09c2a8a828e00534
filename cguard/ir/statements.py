"""
Statement definitions for the cguard IR.

Function bodies are kept structured rather than lowered to a CFG:
- Declare: variable introduction, with optional initializer
- Assign: target = value (including lowered ++, --, +=)
- Call: function call whose result is discarded or stored
- If / Loop / Switch: structured control flow
- Return / Break / Continue: jumps
- Eval: any other expression statement (e.g. a bare dereference)
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, List, Optional

from .types import Exp, ExpVar, Location, root_var
from .decls import Declaration


def _vars(*exps: Optional[Exp]) -> set:
    result = set()
    for e in exps:
        if e is not None:
            result |= e.free_vars()
    return result


# =============================================================================
# Base Statement
# =============================================================================

@dataclass
class Stmt:
    """
    Base class for all statements.

    Every statement has a source location for finding reports.
    """
    loc: Location

    def __str__(self) -> str:
        return "<stmt>"

    def get_read_vars(self) -> set:
        """Return variables read by this statement"""
        return set()

    def get_written_vars(self) -> set:
        """Return variables written by this statement"""
        return set()

    def children(self) -> List['Stmt']:
        """Directly nested statements"""
        return []


# =============================================================================
# Simple statements
# =============================================================================

@dataclass
class Declare(Stmt):
    """Declaration: T name[dims] (= init)?"""
    decl: Declaration
    init: Optional[Exp] = None

    def __str__(self) -> str:
        if self.init is not None:
            return f"{self.decl} = {self.init}"
        return str(self.decl)

    def get_read_vars(self) -> set:
        return _vars(self.init, *self.decl.dims)

    def get_written_vars(self) -> set:
        return {self.decl.name} if self.init is not None else set()


@dataclass
class Assign(Stmt):
    """
    Assignment: target = value

    The target may be any lvalue (`x`, `*p`, `a[i]`, `s.f`, `p->f`).
    """
    target: Exp
    value: Exp

    def __str__(self) -> str:
        return f"{self.target} = {self.value}"

    def get_read_vars(self) -> set:
        reads = _vars(self.value)
        if not isinstance(self.target, ExpVar):
            reads |= self.target.free_vars()
        return reads

    def get_written_vars(self) -> set:
        name = root_var(self.target)
        return {name} if name else set()


@dataclass
class Call(Stmt):
    """
    Function call: ret = func(args)

    ret is None when the result is discarded.
    """
    func: str
    args: List[Exp] = field(default_factory=list)
    ret: Optional[Exp] = None

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        if self.ret is not None:
            return f"{self.ret} = {self.func}({args_str})"
        return f"{self.func}({args_str})"

    def get_read_vars(self) -> set:
        return _vars(*self.args)

    def get_written_vars(self) -> set:
        name = root_var(self.ret) if self.ret is not None else None
        return {name} if name else set()


@dataclass
class Eval(Stmt):
    """Expression evaluated for its effects"""
    exp: Exp

    def __str__(self) -> str:
        return str(self.exp)

    def get_read_vars(self) -> set:
        return self.exp.free_vars()


@dataclass
class Return(Stmt):
    """Return from the function"""
    value: Optional[Exp] = None

    def __str__(self) -> str:
        if self.value is not None:
            return f"return {self.value}"
        return "return"

    def get_read_vars(self) -> set:
        return _vars(self.value)


@dataclass
class Break(Stmt):
    def __str__(self) -> str:
        return "break"


@dataclass
class Continue(Stmt):
    def __str__(self) -> str:
        return "continue"


# =============================================================================
# Structured control flow
# =============================================================================

@dataclass
class If(Stmt):
    """if (condition) then_body else else_body"""
    condition: Exp
    then_body: List[Stmt] = field(default_factory=list)
    else_body: List[Stmt] = field(default_factory=list)

    def __str__(self) -> str:
        return f"if ({self.condition})"

    def get_read_vars(self) -> set:
        return self.condition.free_vars()

    def children(self) -> List[Stmt]:
        return list(self.then_body) + list(self.else_body)


class LoopKind(Enum):
    """Kind of loop the statement came from"""
    FOR = auto()
    WHILE = auto()
    DO_WHILE = auto()


@dataclass
class Loop(Stmt):
    """
    Loop with an optional bound condition.

    For `for (init; condition; update) body`, init runs once before the
    first test and update runs after each iteration. condition is None for
    `for (;;)`.
    """
    kind: LoopKind
    condition: Optional[Exp] = None
    body: List[Stmt] = field(default_factory=list)
    init: List[Stmt] = field(default_factory=list)
    update: List[Stmt] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.kind.name.lower()} ({self.condition})"

    def get_read_vars(self) -> set:
        return _vars(self.condition)

    def children(self) -> List[Stmt]:
        return list(self.init) + list(self.body) + list(self.update)


@dataclass
class SwitchCase:
    """One `case value:` (or `default:` when value is None) arm"""
    value: Optional[Exp]
    body: List[Stmt] = field(default_factory=list)


@dataclass
class Switch(Stmt):
    subject: Exp
    cases: List[SwitchCase] = field(default_factory=list)

    def __str__(self) -> str:
        return f"switch ({self.subject})"

    def get_read_vars(self) -> set:
        return self.subject.free_vars()

    def children(self) -> List[Stmt]:
        result = []
        for case in self.cases:
            result.extend(case.body)
        return result


def walk(stmts: List[Stmt]) -> Iterator[Stmt]:
    """Pre-order traversal over a statement list and all nested bodies"""
    for stmt in stmts:
        yield stmt
        yield from walk(stmt.children())


def written_in(stmts: List[Stmt]) -> set:
    """Names assigned anywhere inside stmts"""
    result = set()
    for stmt in walk(stmts):
        result |= stmt.get_written_vars()
    return result
