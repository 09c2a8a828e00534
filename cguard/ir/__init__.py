"""
cguard intermediate representation.

Structured, per-function statement lists produced by the front end and
consumed by the analysis engine.
"""

from .types import (
    Location, Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, ExpFieldAccess,
    ExpIndex, ExpCast, ExpSizeof, ExpCall, ExpTernary,
    strip_casts, root_var, var, const, binop, field_of, index, call, sizeof_type,
)
from .decls import DeclKind, Declaration, FieldLayout, StructLayout
from .statements import (
    Stmt, Declare, Assign, Call, Eval, Return, Break, Continue,
    If, Loop, LoopKind, Switch, SwitchCase, walk, written_in,
)
from .unit import FunctionUnit, TranslationUnit

__all__ = [
    "Location", "Exp", "ExpVar", "ExpConst", "ExpBinOp", "ExpUnOp", "ExpFieldAccess",
    "ExpIndex", "ExpCast", "ExpSizeof", "ExpCall", "ExpTernary",
    "strip_casts", "root_var", "var", "const", "binop", "field_of", "index", "call", "sizeof_type",
    "DeclKind", "Declaration", "FieldLayout", "StructLayout",
    "Stmt", "Declare", "Assign", "Call", "Eval", "Return", "Break", "Continue",
    "If", "Loop", "LoopKind", "Switch", "SwitchCase", "walk", "written_in",
    "FunctionUnit", "TranslationUnit",
]
