# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
NetBIOS Name Service (RFC 1001 and RFC 1002): name and packet codecs, the
name registry, UDP and TCP servers, ownership challenges and redirects.
"""
