"""
SimReg Utilities Package.
Internal utilities - not part of public API.
"""

from . import formatters, parsers, validators

__all__ = [
    "formatters",
    "parsers",
    "validators",
]
