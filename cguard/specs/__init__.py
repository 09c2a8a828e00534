"""C library knowledge base."""

from .c_specs import ApiClass, ApiSpec, C_SPECS, SCANF_FAMILY, get_spec

__all__ = ["ApiClass", "ApiSpec", "C_SPECS", "SCANF_FAMILY", "get_spec"]
