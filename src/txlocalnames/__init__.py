# -*- test-case-name: txlocalnames -*-

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
txlocalnames: link-local name resolution (LLMNR and NetBIOS) for Twisted.
"""

from txlocalnames._version import __version__ as version

__version__ = version.short()
