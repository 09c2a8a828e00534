"""
Analysis units.

This module defines:
- FunctionUnit: one function body handed from the front end to the engine
- TranslationUnit: all functions of one source file plus file-scope facts

A FunctionUnit is self-contained: it carries the struct layouts and integer
macros visible to it, so it can be analyzed on any worker thread without
touching the TranslationUnit.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from cguard.errors import ParseInputError
from .types import Exp, ExpConst, ExpUnOp, Location
from .decls import Declaration, DeclKind, StructLayout
from .statements import Stmt, walk, Declare


def _is_negative(dim: Exp) -> bool:
    if isinstance(dim, ExpConst) and isinstance(dim.value, int):
        return dim.value < 0
    if isinstance(dim, ExpUnOp) and dim.op == "-" and isinstance(dim.operand, ExpConst):
        return isinstance(dim.operand.value, int) and dim.operand.value > 0
    return False


@dataclass
class FunctionUnit:
    """
    A function analysis unit.

    params are the function's formal parameters (is_param=True). body is the
    structured statement list. end_loc is the location of the closing brace,
    used when reporting facts that are still open at function exit.
    """
    name: str
    params: List[Declaration] = field(default_factory=list)
    body: List[Stmt] = field(default_factory=list)
    loc: Location = field(default_factory=Location.unknown)
    end_loc: Optional[Location] = None
    structs: Dict[str, StructLayout] = field(default_factory=dict)
    constants: Dict[str, int] = field(default_factory=dict)
    syntax_errors: List[Location] = field(default_factory=list)

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.params)
        return f"{self.name}({params})"

    @property
    def exit_loc(self) -> Location:
        return self.end_loc or self.loc

    def declarations(self) -> List[Declaration]:
        """Parameters followed by every local declaration in body order"""
        decls = list(self.params)
        for stmt in walk(self.body):
            if isinstance(stmt, Declare):
                decls.append(stmt.decl)
        return decls

    def validate(self) -> None:
        """
        Check the unit is well-formed.

        Raises:
            ParseInputError: if the unit cannot be analyzed
        """
        if not self.name:
            raise ParseInputError("<anonymous>", "function has no name", self.loc)
        if self.syntax_errors:
            raise ParseInputError(
                self.name,
                f"{len(self.syntax_errors)} syntax error(s) in body",
                self.syntax_errors[0],
            )
        for stmt in walk(self.body):
            if not isinstance(stmt, Stmt):
                raise ParseInputError(self.name, f"unexpected body entry {stmt!r}", self.loc)
            if stmt.loc is None:
                raise ParseInputError(self.name, f"statement '{stmt}' has no location", self.loc)
        for decl in self.declarations():
            if not decl.name:
                raise ParseInputError(self.name, "declaration without a name", decl.loc or self.loc)
            if decl.kind == DeclKind.ARRAY and not decl.dims and not decl.is_param:
                raise ParseInputError(
                    self.name, f"array '{decl.name}' has no dimension", decl.loc or self.loc
                )
            for dim in decl.dims:
                if _is_negative(dim):
                    raise ParseInputError(
                        self.name, f"array '{decl.name}' has negative dimension {dim}",
                        decl.loc or self.loc,
                    )


@dataclass
class TranslationUnit:
    """All functions parsed from one file"""
    filename: str
    functions: List[FunctionUnit] = field(default_factory=list)
    structs: Dict[str, StructLayout] = field(default_factory=dict)
    constants: Dict[str, int] = field(default_factory=dict)

    def get_function(self, name: str) -> Optional[FunctionUnit]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def __len__(self) -> int:
        return len(self.functions)
