"""
Literal and capacity evaluation.

Computes the static quantities the rules compare against each other:
- byte length of string literals (terminator included)
- element and byte capacities of arrays, struct members and heap buffers
- integer constant folding over literals, #define macros and known scalars
- sizeof for primitive types, structs and declared variables

Struct members are treated exactly like plain arrays: the capacity of
`user.name` is the declared dimension of `name`. Struct sizes are the
unpadded sum of member sizes.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from cguard.errors import UnresolvedFactError
from cguard.ir.decls import DeclKind, StructLayout
from cguard.ir.types import (
    Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, ExpFieldAccess, ExpIndex,
    ExpCast, ExpSizeof, ExpTernary, strip_casts,
)
from .facts import Buffer, Capacity, StringLiteralFact

if TYPE_CHECKING:
    from .tracker import FactTable


POINTER_SIZE = 8

# LP64 widths
PRIMITIVE_SIZES: Dict[str, int] = {
    "char": 1,
    "bool": 1,
    "_Bool": 1,
    "int8_t": 1,
    "uint8_t": 1,
    "short": 2,
    "int16_t": 2,
    "uint16_t": 2,
    "wchar_t": 4,
    "int": 4,
    "float": 4,
    "int32_t": 4,
    "uint32_t": 4,
    "long": 8,
    "long long": 8,
    "double": 8,
    "long double": 16,
    "size_t": 8,
    "ssize_t": 8,
    "off_t": 8,
    "int64_t": 8,
    "uint64_t": 8,
    "intptr_t": 8,
    "uintptr_t": 8,
}

_QUALIFIERS = {"const", "volatile", "static", "extern", "register", "restrict",
               "inline", "struct", "union", "enum", "signed", "unsigned"}

# widest shift folded; C leaves larger or negative counts undefined
MAX_SHIFT = 64

_BINOPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "<<": lambda a, b: a << b,
    ">>": lambda a, b: a >> b,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
    "^": lambda a, b: a ^ b,
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "<": lambda a, b: int(a < b),
    "<=": lambda a, b: int(a <= b),
    ">": lambda a, b: int(a > b),
    ">=": lambda a, b: int(a >= b),
    "&&": lambda a, b: int(bool(a) and bool(b)),
    "||": lambda a, b: int(bool(a) or bool(b)),
}


def normalize_type(type_name: str) -> str:
    """
    Canonical spelling of a C type name.

    "const char *" -> "char *", "unsigned int" -> "int",
    "struct User" -> "User", "unsigned" -> "int".
    """
    stars = type_name.count("*")
    words = [w for w in type_name.replace("*", " ").split() if w not in _QUALIFIERS]
    base = " ".join(words) or "int"
    if base == "long int":
        base = "long"
    elif base in ("short int", "long long int"):
        base = base.rsplit(" ", 1)[0]
    return base + (" " + "*" * stars if stars else "")


def is_pointer_type(type_name: str) -> bool:
    return type_name.rstrip().endswith("*")


def pointee_type(type_name: str) -> str:
    """Type pointed to: "char *" -> "char", "char **" -> "char *" """
    t = normalize_type(type_name)
    if not t.endswith("*"):
        return t
    t = t[:-1].rstrip()
    return t


def literal_byte_length(text: str) -> int:
    """Bytes needed to store text, excluding the terminator.

    Characters below 256 came from escapes or ASCII source and take one
    byte; anything else was written as UTF-8 in the source file.
    """
    return sum(1 if ord(ch) < 256 else len(ch.encode("utf-8")) for ch in text)


def literal_length(exp: Exp) -> Optional[int]:
    """
    Length of a string literal including its NUL terminator.

    Returns None for anything that is not a literal.
    """
    exp = strip_casts(exp)
    if isinstance(exp, ExpConst) and exp.is_string:
        return literal_byte_length(exp.value) + 1
    return None


def literal_fact(exp: Exp) -> Optional[StringLiteralFact]:
    length = literal_length(exp)
    if length is None:
        return None
    return StringLiteralFact(length)


def capacity_of(buffer: Optional[Buffer]) -> Capacity:
    """Capacity recorded for a buffer; Unknown when there is no buffer fact"""
    if buffer is None:
        return Capacity.unknown()
    return buffer.capacity


def path_of(exp: Exp) -> Optional[str]:
    """
    Stable key for an lvalue, used to index facts.

    `p` -> "p", `user.name` -> "user.name", `p->buf` -> "p.buf",
    `board[i].name` -> "board[*].name". None for non-lvalues.
    """
    exp = strip_casts(exp)
    if isinstance(exp, ExpVar):
        return exp.name
    if isinstance(exp, ExpFieldAccess):
        base = path_of(exp.base)
        return f"{base}.{exp.field_name}" if base else None
    if isinstance(exp, ExpIndex):
        base = path_of(exp.base)
        return f"{base}[*]" if base else None
    if isinstance(exp, ExpUnOp) and exp.op == "*":
        base = path_of(exp.operand)
        return f"{base}[*]" if base else None
    return None


@dataclass(frozen=True)
class TypeView:
    """Static type of an lvalue: element type plus remaining array dims"""
    type_name: str
    dims: Tuple[Optional[int], ...] = ()

    @property
    def is_array(self) -> bool:
        return bool(self.dims)

    @property
    def is_pointer(self) -> bool:
        return not self.dims and is_pointer_type(self.type_name)

    def element(self) -> Optional['TypeView']:
        """Type after one level of indexing or dereference"""
        if self.dims:
            return TypeView(self.type_name, self.dims[1:])
        if is_pointer_type(self.type_name):
            return TypeView(pointee_type(self.type_name))
        return None


class Evaluator:
    """
    Static evaluator for one function.

    structs and constants are the struct layouts and integer macros visible
    to the function. Scalars and declarations come from the fact table
    passed to each call, so one evaluator serves every path state.
    """

    def __init__(self, structs: Dict[str, StructLayout] = None, constants: Dict[str, int] = None):
        self.structs = structs or {}
        self.constants = constants or {}

    # -------------------------------------------------------------------------
    # Constant folding
    # -------------------------------------------------------------------------

    def constant_value(self, exp: Exp, table: 'FactTable' = None) -> int:
        """
        Fold exp to an integer.

        Raises:
            UnresolvedFactError: if exp is not a compile-time constant
        """
        if isinstance(exp, ExpConst):
            if isinstance(exp.value, bool):
                return int(exp.value)
            if isinstance(exp.value, int):
                return exp.value
            if isinstance(exp.value, float) and exp.value.is_integer():
                return int(exp.value)
            raise UnresolvedFactError(exp, "not an integer constant")
        if isinstance(exp, ExpVar):
            if exp.name in self.constants:
                return self.constants[exp.name]
            if table is not None and exp.name in table.scalars:
                return table.scalars[exp.name]
            raise UnresolvedFactError(exp, "value not known statically")
        if isinstance(exp, ExpCast):
            return self.constant_value(exp.exp, table)
        if isinstance(exp, ExpUnOp):
            value = self.constant_value(exp.operand, table)
            if exp.op == "-":
                return -value
            if exp.op == "+":
                return value
            if exp.op == "~":
                return ~value
            if exp.op == "!":
                return int(not value)
            raise UnresolvedFactError(exp, f"unary '{exp.op}' is not constant")
        if isinstance(exp, ExpBinOp):
            left = self.constant_value(exp.left, table)
            right = self.constant_value(exp.right, table)
            if exp.op in ("/", "%"):
                if right == 0:
                    raise UnresolvedFactError(exp, "division by zero")
                # C truncates toward zero
                quotient = abs(left) // abs(right) * (1 if (left >= 0) == (right >= 0) else -1)
                return quotient if exp.op == "/" else left - quotient * right
            if exp.op in ("<<", ">>") and not 0 <= right < MAX_SHIFT:
                raise UnresolvedFactError(exp, f"shift count {right} out of range")
            fn = _BINOPS.get(exp.op)
            if fn is None:
                raise UnresolvedFactError(exp, f"operator '{exp.op}' is not constant")
            return fn(left, right)
        if isinstance(exp, ExpTernary):
            cond = self.constant_value(exp.condition, table)
            return self.constant_value(exp.true_exp if cond else exp.false_exp, table)
        if isinstance(exp, ExpSizeof):
            size = self.sizeof(exp, table)
            if size is None:
                raise UnresolvedFactError(exp, "size not known statically")
            return size
        raise UnresolvedFactError(exp, f"{type(exp).__name__} is not constant")

    def try_constant(self, exp: Optional[Exp], table: 'FactTable' = None) -> Optional[int]:
        """constant_value, or None when it cannot be resolved"""
        if exp is None:
            return None
        try:
            return self.constant_value(exp, table)
        except UnresolvedFactError:
            return None

    def dims_of(self, dims: List[Exp], table: 'FactTable' = None) -> Tuple[Optional[int], ...]:
        return tuple(self.try_constant(d, table) for d in dims)

    # -------------------------------------------------------------------------
    # sizeof
    # -------------------------------------------------------------------------

    def sizeof_type(self, type_name: str, _depth: int = 0) -> Optional[int]:
        """Byte size of a named type, or None if unknown"""
        t = normalize_type(type_name)
        if is_pointer_type(t):
            return POINTER_SIZE
        if t in PRIMITIVE_SIZES:
            return PRIMITIVE_SIZES[t]
        layout = self.structs.get(t)
        if layout is None or _depth > 8:
            return None
        total = 0
        for f in layout.fields:
            if f.kind == DeclKind.POINTER:
                size = POINTER_SIZE
            else:
                size = self.sizeof_type(f.base_type, _depth + 1)
            if size is None:
                return None
            for d in self.dims_of(f.dims):
                if d is None:
                    return None
                size *= d
            total += size
        return total

    def sizeof_view(self, view: TypeView) -> Optional[int]:
        size = self.sizeof_type(view.type_name)
        if size is None:
            return None
        for d in view.dims:
            if d is None:
                return None
            size *= d
        return size

    def sizeof(self, exp: ExpSizeof, table: 'FactTable' = None) -> Optional[int]:
        if exp.type_name is not None:
            return self.sizeof_type(exp.type_name)
        operand = exp.operand
        if isinstance(operand, ExpConst) and operand.is_string:
            return literal_length(operand)
        view = self.type_of(operand, table)
        if view is None:
            return None
        return self.sizeof_view(view)

    # -------------------------------------------------------------------------
    # Types and capacities of lvalues
    # -------------------------------------------------------------------------

    def type_of(self, exp: Exp, table: 'FactTable' = None) -> Optional[TypeView]:
        """Static type of an lvalue expression, when it can be resolved"""
        exp = strip_casts(exp)
        if isinstance(exp, ExpVar):
            decl = table.decls.get(exp.name) if table is not None else None
            if decl is None:
                return None
            return TypeView(normalize_type(decl.base_type), self.dims_of(decl.dims, table))
        if isinstance(exp, ExpIndex):
            base = self.type_of(exp.base, table)
            return base.element() if base else None
        if isinstance(exp, ExpUnOp) and exp.op == "*":
            base = self.type_of(exp.operand, table)
            return base.element() if base else None
        if isinstance(exp, ExpFieldAccess):
            base = self.type_of(exp.base, table)
            if base is None:
                return None
            if exp.is_arrow:
                base = base.element()
                if base is None:
                    return None
            if base.dims:
                return None
            layout = self.structs.get(normalize_type(base.type_name))
            member = layout.field_named(exp.field_name) if layout else None
            if member is None:
                return None
            return TypeView(normalize_type(member.base_type), self.dims_of(member.dims, table))
        return None

    def element_size(self, view: Optional[TypeView]) -> Optional[int]:
        """Bytes per element of an array or pointer view"""
        if view is None:
            return None
        elem = view.element()
        return self.sizeof_view(elem) if elem else None

    def buffer_for(self, exp: Exp, table: 'FactTable') -> Optional[Buffer]:
        """Buffer fact tracked under exp's path, if any"""
        key = path_of(exp)
        if key is None:
            return None
        return table.buffers.get(key)

    def capacity_of_exp(self, exp: Exp, table: 'FactTable') -> Capacity:
        """
        Element capacity of the storage an expression designates.

        Tracked buffers (arrays, heap allocations) win; otherwise the
        declared type is consulted, which covers struct members and inner
        dimensions of multi-dimensional arrays.
        """
        exp = strip_casts(exp)
        if isinstance(exp, ExpUnOp) and exp.op == "&":
            return Capacity.unknown()
        buffer = self.buffer_for(exp, table)
        if buffer is not None:
            return buffer.capacity
        view = self.type_of(exp, table)
        if view is not None and view.dims:
            if view.dims[0] is None:
                return Capacity.unknown()
            return Capacity.known(view.dims[0])
        return Capacity.unknown()

    def byte_capacity_of_exp(self, exp: Exp, table: 'FactTable') -> Capacity:
        exp = strip_casts(exp)
        buffer = self.buffer_for(exp, table)
        if buffer is not None:
            return buffer.byte_capacity
        capacity = self.capacity_of_exp(exp, table)
        return capacity.scaled(self.element_size(self.type_of(exp, table)))

    def allocation_size(self, args: List[Exp], size_args: Tuple[int, ...],
                        table: 'FactTable') -> Optional[int]:
        """Byte size requested by an allocator call, product of its size args"""
        if not size_args:
            return None
        total = 1
        for position in size_args:
            if position >= len(args):
                return None
            value = self.try_constant(args[position], table)
            if value is None or value < 0:
                return None
            total *= value
        return total
