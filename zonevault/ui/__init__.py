"""
UI module - Rich console interface for the zonevault CLI.
"""

from .console import ConsoleUI

__all__ = [
    "ConsoleUI",
]
