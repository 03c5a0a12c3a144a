"""
Utility modules for Claw.
"""

from .events import EventEmitter
from .console import console, VerboseLevel

__all__ = ["EventEmitter", "console", "VerboseLevel"]
