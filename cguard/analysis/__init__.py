"""
Per-function analysis: facts, tracking, rules, range checks and the driver.
"""

from .facts import (
    TaintLabel, Capacity, CapacityKind, Buffer, BufferOrigin, StringLiteralFact,
    IndexKind, IndexFact, PointerState, PointerEvent, PointerFact, transition,
)
from .evaluator import Evaluator, TypeView, literal_length, path_of
from .rules import RuleRegistry, CallSite, ArgFacts, default_registry, make_finding
from .ranges import RangeChecker, RangeVerdict, LoopFrame
from .tracker import FactTable, SymbolTracker, AnalysisContext
from .engine import FunctionAnalyzer, AnalysisEngine, AnalysisRun

__all__ = [
    "TaintLabel", "Capacity", "CapacityKind", "Buffer", "BufferOrigin", "StringLiteralFact",
    "IndexKind", "IndexFact", "PointerState", "PointerEvent", "PointerFact", "transition",
    "Evaluator", "TypeView", "literal_length", "path_of",
    "RuleRegistry", "CallSite", "ArgFacts", "default_registry", "make_finding",
    "RangeChecker", "RangeVerdict", "LoopFrame",
    "FactTable", "SymbolTracker", "AnalysisContext",
    "FunctionAnalyzer", "AnalysisEngine", "AnalysisRun",
]
