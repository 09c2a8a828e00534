"""
Core type definitions for the cguard IR.

This module defines the fundamental types shared by the front end and the
analysis passes:
- Source locations for finding reports
- Expression AST nodes
- Small builder helpers used by tests and the front end
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union, Any


# =============================================================================
# Locations
# =============================================================================

@dataclass(frozen=True)
class Location:
    """
    Source location for finding reports.

    Lines are 1-based, columns are 1-based (0 means "unknown column").
    """
    file: str
    line: int
    column: int = 0
    end_line: Optional[int] = None
    end_column: Optional[int] = None

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"

    def __repr__(self) -> str:
        return f"Location({self.file!r}, {self.line}, {self.column})"

    def sort_key(self) -> tuple:
        return (self.file, self.line, self.column)

    @classmethod
    def unknown(cls) -> 'Location':
        """Create an unknown location"""
        return cls("<unknown>", 0)


# =============================================================================
# Expressions
# =============================================================================

@dataclass
class Exp:
    """Base class for expressions"""

    def __str__(self) -> str:
        return "<exp>"

    def free_vars(self) -> set:
        """Return set of free variables in this expression"""
        return set()

    def calls(self) -> List['ExpCall']:
        """Return nested calls, innermost first"""
        return []


@dataclass
class ExpVar(Exp):
    """Variable reference by source name."""
    name: str

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"ExpVar({self.name!r})"

    def free_vars(self) -> set:
        return {self.name}


@dataclass
class ExpConst(Exp):
    """
    Constant value.

    Integers (character constants are stored as their code point), floats,
    decoded string literals and null.
    """
    value: Union[int, float, str, None]

    def __str__(self) -> str:
        if self.value is None:
            return "NULL"
        if isinstance(self.value, str):
            escaped = self.value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
            if len(escaped) > 50:
                escaped = escaped[:47] + "..."
            return f'"{escaped}"'
        return str(self.value)

    def __repr__(self) -> str:
        return f"ExpConst({self.value!r})"

    @property
    def is_null(self) -> bool:
        return self.value is None

    @property
    def is_string(self) -> bool:
        return isinstance(self.value, str)

    @classmethod
    def null(cls) -> 'ExpConst':
        return cls(None)


@dataclass
class ExpBinOp(Exp):
    """
    Binary operation.

    Supports arithmetic, comparison, and logical operators.
    """
    op: str  # "+", "-", "*", "/", "%", "==", "!=", "<", ">", "<=", ">=", "&&", "||", "&", "|", "^", "<<", ">>"
    left: Exp
    right: Exp

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"

    def __repr__(self) -> str:
        return f"ExpBinOp({self.op!r}, {self.left!r}, {self.right!r})"

    def free_vars(self) -> set:
        return self.left.free_vars() | self.right.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.left.calls() + self.right.calls()


@dataclass
class ExpUnOp(Exp):
    """
    Unary operation.

    Includes negation, logical not, dereference, and address-of.
    """
    op: str  # "-" (negate), "!" (not), "*" (deref), "&" (addr-of), "~" (bitwise not)
    operand: Exp

    def __str__(self) -> str:
        if self.op in ("*", "&"):
            return f"{self.op}{self.operand}"
        return f"{self.op}({self.operand})"

    def __repr__(self) -> str:
        return f"ExpUnOp({self.op!r}, {self.operand!r})"

    def free_vars(self) -> set:
        return self.operand.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.operand.calls()


@dataclass
class ExpFieldAccess(Exp):
    """
    Field access.

    Handles both struct.field and ptr->field access patterns.
    """
    base: Exp
    field_name: str
    is_arrow: bool = False  # True for ptr->field, False for struct.field

    def __str__(self) -> str:
        op = "->" if self.is_arrow else "."
        return f"{self.base}{op}{self.field_name}"

    def __repr__(self) -> str:
        return f"ExpFieldAccess({self.base!r}, {self.field_name!r}, {self.is_arrow})"

    def free_vars(self) -> set:
        return self.base.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.base.calls()


@dataclass
class ExpIndex(Exp):
    """
    Array indexing.

    Represents base[index] access.
    """
    base: Exp
    index: Exp

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"

    def __repr__(self) -> str:
        return f"ExpIndex({self.base!r}, {self.index!r})"

    def free_vars(self) -> set:
        return self.base.free_vars() | self.index.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.base.calls() + self.index.calls()


@dataclass
class ExpCast(Exp):
    """Type cast expression: (type_name) exp"""
    exp: Exp
    type_name: str

    def __str__(self) -> str:
        return f"({self.type_name}){self.exp}"

    def __repr__(self) -> str:
        return f"ExpCast({self.exp!r}, {self.type_name!r})"

    def free_vars(self) -> set:
        return self.exp.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.exp.calls()


@dataclass
class ExpSizeof(Exp):
    """
    sizeof expression.

    Exactly one of type_name (sizeof(int), sizeof(struct User)) or
    operand (sizeof buf, sizeof(buf)) is set.
    """
    type_name: Optional[str] = None
    operand: Optional[Exp] = None

    def __str__(self) -> str:
        if self.type_name is not None:
            return f"sizeof({self.type_name})"
        return f"sizeof({self.operand})"

    def __repr__(self) -> str:
        return f"ExpSizeof({self.type_name!r}, {self.operand!r})"


@dataclass
class ExpCall(Exp):
    """
    Function call expression (for calls whose value is used in an expression).

    Different from the Call statement - this is for nested calls like
    `if (fgets(buf, n, f) == NULL)` or `p = (char *)malloc(n)`.
    """
    func: str
    args: List[Exp] = field(default_factory=list)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.func}({args_str})"

    def __repr__(self) -> str:
        return f"ExpCall({self.func!r}, {self.args!r})"

    def free_vars(self) -> set:
        result = set()
        for arg in self.args:
            result |= arg.free_vars()
        return result

    def calls(self) -> List['ExpCall']:
        result = []
        for arg in self.args:
            result.extend(arg.calls())
        result.append(self)
        return result


@dataclass
class ExpTernary(Exp):
    """
    Ternary conditional expression: cond ? true_exp : false_exp
    """
    condition: Exp
    true_exp: Exp
    false_exp: Exp

    def __str__(self) -> str:
        return f"({self.condition} ? {self.true_exp} : {self.false_exp})"

    def __repr__(self) -> str:
        return f"ExpTernary({self.condition!r}, {self.true_exp!r}, {self.false_exp!r})"

    def free_vars(self) -> set:
        return self.condition.free_vars() | self.true_exp.free_vars() | self.false_exp.free_vars()

    def calls(self) -> List['ExpCall']:
        return self.condition.calls() + self.true_exp.calls() + self.false_exp.calls()


# =============================================================================
# Helper functions
# =============================================================================

def strip_casts(exp: Exp) -> Exp:
    """Remove any number of enclosing casts"""
    while isinstance(exp, ExpCast):
        exp = exp.exp
    return exp


def root_var(exp: Exp) -> Optional[str]:
    """
    Name of the variable an lvalue-ish expression is rooted at.

    `p`, `*p`, `p[i]`, `p->f`, `(char *)p` -> "p". Returns None for
    constants, calls and arithmetic.
    """
    exp = strip_casts(exp)
    if isinstance(exp, ExpVar):
        return exp.name
    if isinstance(exp, ExpUnOp) and exp.op in ("*", "&"):
        return root_var(exp.operand)
    if isinstance(exp, ExpIndex):
        return root_var(exp.base)
    if isinstance(exp, ExpFieldAccess):
        return root_var(exp.base)
    return None


def var(name: str) -> ExpVar:
    """Create a variable expression from a name"""
    return ExpVar(name)


def const(value: Any) -> ExpConst:
    """Create a constant expression"""
    if value is None:
        return ExpConst.null()
    return ExpConst(value)


def binop(op: str, left: Exp, right: Exp) -> ExpBinOp:
    """Create a binary operation expression"""
    return ExpBinOp(op, left, right)


def field_of(base: Exp, name: str, arrow: bool = False) -> ExpFieldAccess:
    """Create a field access expression"""
    return ExpFieldAccess(base, name, arrow)


def index(base: Exp, idx: Exp) -> ExpIndex:
    """Create an index expression"""
    return ExpIndex(base, idx)


def call(func: str, *args: Exp) -> ExpCall:
    """Create a nested call expression"""
    return ExpCall(func, list(args))


def sizeof_type(type_name: str) -> ExpSizeof:
    return ExpSizeof(type_name=type_name)
