"""
Provides txlocalnames version information.
"""

# This file is auto-generated! Do not edit!
# Use `python -m incremental.update txlocalnames` to change this file.

from incremental import Version

__version__ = Version("txlocalnames", 1, 0, 0)
__all__ = ["__version__"]
