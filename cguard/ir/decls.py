"""
Declarations and struct layouts.

A Declaration records what the front end knows about a name at the point it
is introduced: its kind, declared dimensions and base type. Dimensions are
kept as expressions so macro-sized arrays (`char buf[SIZE]`) are resolved by
the evaluator rather than the front end.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .types import Exp, Location


class DeclKind(Enum):
    """Storage kind of a declared name"""
    ARRAY = "array"
    POINTER = "pointer"
    STRUCT = "struct"
    SCALAR = "scalar"


@dataclass
class Declaration:
    """
    A declared variable or parameter.

    base_type is the element type as written, pointer stars included:
    `char *p` is POINTER with base_type "char *", and an array of pointers
    (`char *names[4]`) is ARRAY with base_type "char *". dims is one
    expression per array dimension, outermost first.
    """
    name: str
    kind: DeclKind
    base_type: str = "int"
    dims: List[Exp] = field(default_factory=list)
    is_param: bool = False
    loc: Optional[Location] = None

    def __str__(self) -> str:
        dims = "".join(f"[{d}]" for d in self.dims)
        return f"{self.base_type} {self.name}{dims}"

    @property
    def is_pointer(self) -> bool:
        return self.kind == DeclKind.POINTER

    @property
    def is_array(self) -> bool:
        return self.kind == DeclKind.ARRAY


@dataclass
class FieldLayout:
    """One member of a struct"""
    name: str
    kind: DeclKind
    base_type: str = "int"
    dims: List[Exp] = field(default_factory=list)


@dataclass
class StructLayout:
    """
    Struct member layout.

    Registered under its tag (`struct User` -> "User") and under every
    typedef name that refers to it.
    """
    name: str
    fields: List[FieldLayout] = field(default_factory=list)

    def field_named(self, name: str) -> Optional[FieldLayout]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


StructTable = Dict[str, StructLayout]
