#!/usr/bin/env python3
"""
cguard CLI entry point for `python -m cguard`.

Usage:
    python -m cguard scan app.c
    python -m cguard scan src/ --format json
"""

import sys
from cguard.cli import main

if __name__ == "__main__":
    sys.exit(main())
