"""
cguard: static detection of unsafe memory and input handling in C.

The library is organized into logical modules:
- ir: statement/expression model and per-function analysis units
- frontend: tree-sitter C front end producing analysis units
- specs: knowledge base of C library APIs
- analysis: fact model, symbol tracking, evaluation, call-site rules,
  loop range checks and the per-function driver
- reporter: finding records and aggregation
- scanner: file and directory scanning
"""

from cguard.config import AnalysisConfig
from cguard.errors import CGuardError, ParseInputError, UnresolvedFactError
from cguard.ir import FunctionUnit, TranslationUnit, Location
from cguard.reporter import (
    Severity, BugClass, Finding, AnalysisFailure, FindingReporter,
)
from cguard.analysis import AnalysisEngine, AnalysisRun, FunctionAnalyzer, default_registry
from cguard.scanner import CScanner, ScanResult

__version__ = "0.1.0"
__all__ = [
    "AnalysisConfig",
    "CGuardError", "ParseInputError", "UnresolvedFactError",
    "FunctionUnit", "TranslationUnit", "Location",
    "Severity", "BugClass", "Finding", "AnalysisFailure", "FindingReporter",
    "AnalysisEngine", "AnalysisRun", "FunctionAnalyzer", "default_registry",
    "CScanner", "ScanResult",
]
