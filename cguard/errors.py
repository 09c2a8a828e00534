"""
Exception types raised by cguard.

ParseInputError is fatal to one function's analysis only; the engine records
it and keeps going. UnresolvedFactError is raised by the strict evaluator and
is always caught by callers, which fall back to an Unknown fact.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from cguard.ir.types import Location


class CGuardError(Exception):
    """Base class for cguard errors"""


class ParseInputError(CGuardError):
    """A function analysis unit handed over by the front end is malformed."""

    def __init__(self, unit: str, reason: str, location: Optional["Location"] = None):
        self.unit = unit
        self.reason = reason
        self.location = location
        where = f" at {location}" if location else ""
        super().__init__(f"malformed unit '{unit}'{where}: {reason}")


class UnresolvedFactError(CGuardError):
    """A fact needed by a rule cannot be computed statically."""

    def __init__(self, expression: object, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"cannot resolve '{expression}': {reason}")
