"""
Source frontends.

The C frontend uses tree-sitter-c to translate a source file into one
FunctionUnit per function definition.
"""

try:
    from cguard.frontend.c_frontend import CFrontend
    C_FRONTEND_AVAILABLE = True
except ImportError:
    C_FRONTEND_AVAILABLE = False
    CFrontend = None

__all__ = [
    "CFrontend",
    "C_FRONTEND_AVAILABLE",
]
