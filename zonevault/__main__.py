"""
Entry point for running zonevault as a module.

Usage:
    python -m zonevault list
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
