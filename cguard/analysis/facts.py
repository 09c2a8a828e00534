"""
Fact model for per-function analysis.

Facts are small immutable values: a fact table replaces a fact rather than
mutating it, which lets path states share facts freely.

- Capacity: known element count, or explicitly Unbounded / Unknown
- Buffer: a named storage location with origin and capacity
- StringLiteralFact: byte length of a literal, terminator included
- TaintLabel: provenance of a value
- IndexFact: classification of an index expression against a capacity
- PointerState / PointerEvent: the pointer lifecycle state machine
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from cguard.ir.types import Exp, Location


# =============================================================================
# Rule identifiers
# =============================================================================

UNBOUNDED_COPY = "unbounded-copy"
UNBOUNDED_FORMAT = "unbounded-format"
FORMAT_STRING_INJECTION = "format-string-injection"
DANGEROUS_INPUT_FUNCTION = "dangerous-input-function"
OVERSIZED_LENGTH_ARGUMENT = "oversized-length-argument"
UNCHECKED_ALLOCATION_USE = "unchecked-allocation-use"
LEAKED_ALLOCATION = "leaked-allocation"
USE_AFTER_FREE = "use-after-free"
DOUBLE_FREE = "double-free"
ARRAY_INDEX_OUT_OF_BOUNDS = "array-index-out-of-bounds"
LOOP_INDEX_OUT_OF_BOUNDS = "loop-index-out-of-bounds"


# =============================================================================
# Taint
# =============================================================================

class TaintLabel(Enum):
    """Provenance of a value"""
    LITERAL = "literal"
    EXTERNAL_INPUT = "external_input"
    UNKNOWN = "unknown"

    def join(self, other: 'TaintLabel') -> 'TaintLabel':
        """Least upper bound: ExternalInput > Unknown > Literal"""
        if TaintLabel.EXTERNAL_INPUT in (self, other):
            return TaintLabel.EXTERNAL_INPUT
        if TaintLabel.UNKNOWN in (self, other):
            return TaintLabel.UNKNOWN
        return TaintLabel.LITERAL


# =============================================================================
# Capacities and buffers
# =============================================================================

class CapacityKind(Enum):
    KNOWN = "known"
    UNBOUNDED = "unbounded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Capacity:
    """
    Number of elements a buffer can hold.

    A known capacity is always a non-negative integer. Anything that cannot
    be computed is UNKNOWN, never zero.
    """
    kind: CapacityKind
    value: Optional[int] = None

    def __post_init__(self):
        if self.kind == CapacityKind.KNOWN:
            if self.value is None or self.value < 0:
                raise ValueError(f"known capacity must be a non-negative integer, got {self.value!r}")
        elif self.value is not None:
            raise ValueError(f"{self.kind.value} capacity cannot carry a value")

    def __str__(self) -> str:
        if self.kind == CapacityKind.KNOWN:
            return str(self.value)
        return self.kind.value

    @property
    def is_known(self) -> bool:
        return self.kind == CapacityKind.KNOWN

    def scaled(self, factor: Optional[int]) -> 'Capacity':
        if not self.is_known:
            return self
        if factor is None:
            return Capacity.unknown()
        return Capacity.known(self.value * factor)

    @classmethod
    def known(cls, value: int) -> 'Capacity':
        return cls(CapacityKind.KNOWN, value)

    @classmethod
    def unknown(cls) -> 'Capacity':
        return cls(CapacityKind.UNKNOWN)

    @classmethod
    def unbounded(cls) -> 'Capacity':
        return cls(CapacityKind.UNBOUNDED)


class BufferOrigin(Enum):
    FIXED_ARRAY = "fixed_array"
    HEAP_ALLOCATION = "heap_allocation"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Buffer:
    """
    A named storage location.

    capacity counts elements; element_size is bytes per element when known.
    size_text is the declared dimension or allocation size as written.
    """
    name: str
    origin: BufferOrigin
    capacity: Capacity
    element_size: Optional[int] = 1
    size_text: str = ""
    declared_at: Optional[Location] = None

    @property
    def byte_capacity(self) -> Capacity:
        return self.capacity.scaled(self.element_size)

    def __str__(self) -> str:
        return f"{self.name}[{self.capacity}] ({self.origin.value})"


@dataclass(frozen=True)
class StringLiteralFact:
    """Byte length of a string literal including its terminating NUL"""
    length: int


# =============================================================================
# Index classification
# =============================================================================

class IndexKind(Enum):
    CONSTANT_IN_BOUNDS = "constant_in_bounds"
    CONSTANT_OUT_OF_BOUNDS = "constant_out_of_bounds"
    LOOP_BOUND = "loop_bound"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class IndexFact:
    """
    Classification of an index expression.

    value is set for constant indices; operator and bound are set for a
    LOOP_BOUND index (the loop condition `i <= bound`).
    """
    kind: IndexKind
    value: Optional[int] = None
    operator: Optional[str] = None
    bound: Optional[Exp] = None

    @classmethod
    def constant(cls, value: int, capacity: Capacity) -> 'IndexFact':
        if capacity.is_known and (value >= capacity.value or value < 0):
            return cls(IndexKind.CONSTANT_OUT_OF_BOUNDS, value=value)
        if capacity.is_known:
            return cls(IndexKind.CONSTANT_IN_BOUNDS, value=value)
        return cls(IndexKind.UNKNOWN, value=value)

    @classmethod
    def loop_bound(cls, operator: str, bound: Exp) -> 'IndexFact':
        return cls(IndexKind.LOOP_BOUND, operator=operator, bound=bound)

    @classmethod
    def unknown(cls) -> 'IndexFact':
        return cls(IndexKind.UNKNOWN)


# =============================================================================
# Pointer lifecycle
# =============================================================================

class PointerState(Enum):
    UNINITIALIZED = "uninitialized"
    ALLOCATED = "allocated"
    FREED = "freed"
    ESCAPED = "escaped"


class PointerEvent(Enum):
    ALLOCATE = "allocate"
    FREE = "free"
    USE = "use"
    NULLIFY = "nullify"
    REASSIGN = "reassign"
    ESCAPE = "escape"


_S = PointerState
_E = PointerEvent

TRANSITIONS: Dict[Tuple[PointerState, PointerEvent], PointerState] = {
    (_S.UNINITIALIZED, _E.ALLOCATE): _S.ALLOCATED,
    (_S.UNINITIALIZED, _E.FREE): _S.FREED,
    (_S.UNINITIALIZED, _E.USE): _S.UNINITIALIZED,
    (_S.UNINITIALIZED, _E.NULLIFY): _S.UNINITIALIZED,
    (_S.UNINITIALIZED, _E.REASSIGN): _S.UNINITIALIZED,
    (_S.UNINITIALIZED, _E.ESCAPE): _S.UNINITIALIZED,

    (_S.ALLOCATED, _E.ALLOCATE): _S.ALLOCATED,
    (_S.ALLOCATED, _E.FREE): _S.FREED,
    (_S.ALLOCATED, _E.USE): _S.ALLOCATED,
    (_S.ALLOCATED, _E.NULLIFY): _S.UNINITIALIZED,
    (_S.ALLOCATED, _E.REASSIGN): _S.UNINITIALIZED,
    (_S.ALLOCATED, _E.ESCAPE): _S.ESCAPED,

    (_S.FREED, _E.ALLOCATE): _S.ALLOCATED,
    (_S.FREED, _E.FREE): _S.FREED,
    (_S.FREED, _E.USE): _S.FREED,
    (_S.FREED, _E.NULLIFY): _S.UNINITIALIZED,
    (_S.FREED, _E.REASSIGN): _S.UNINITIALIZED,
    (_S.FREED, _E.ESCAPE): _S.FREED,

    (_S.ESCAPED, _E.ALLOCATE): _S.ALLOCATED,
    (_S.ESCAPED, _E.FREE): _S.FREED,
    (_S.ESCAPED, _E.USE): _S.ESCAPED,
    (_S.ESCAPED, _E.NULLIFY): _S.UNINITIALIZED,
    (_S.ESCAPED, _E.REASSIGN): _S.UNINITIALIZED,
    (_S.ESCAPED, _E.ESCAPE): _S.ESCAPED,
}

# Transitions that are findings in their own right
ILLEGAL_TRANSITIONS: Dict[Tuple[PointerState, PointerEvent], str] = {
    (_S.FREED, _E.FREE): DOUBLE_FREE,
    (_S.FREED, _E.USE): USE_AFTER_FREE,
    (_S.ALLOCATED, _E.ALLOCATE): LEAKED_ALLOCATION,
    (_S.ALLOCATED, _E.NULLIFY): LEAKED_ALLOCATION,
    (_S.ALLOCATED, _E.REASSIGN): LEAKED_ALLOCATION,
}


def transition(state: PointerState, event: PointerEvent) -> Tuple[PointerState, Optional[str]]:
    """Apply one lifecycle event. Returns (new state, violated rule id or None)."""
    return TRANSITIONS[(state, event)], ILLEGAL_TRANSITIONS.get((state, event))


@dataclass(frozen=True)
class PointerFact:
    """
    Lifecycle fact for one pointer variable.

    null_checked is True once a branch has established the pointer is not
    NULL since its last allocation. may_be_null comes from the allocator.
    """
    state: PointerState = PointerState.UNINITIALIZED
    allocated_at: Optional[Location] = None
    freed_at: Optional[Location] = None
    null_checked: bool = False
    may_be_null: bool = False

    def after(self, event: PointerEvent, loc: Location) -> 'PointerFact':
        """Fact after event; bookkeeping fields follow the new state"""
        new_state, _ = transition(self.state, event)
        if event == PointerEvent.ALLOCATE:
            return PointerFact(new_state, allocated_at=loc)
        if new_state == PointerState.FREED and self.state != PointerState.FREED:
            return replace(self, state=new_state, freed_at=loc)
        if new_state == PointerState.UNINITIALIZED:
            return PointerFact()
        return replace(self, state=new_state)
