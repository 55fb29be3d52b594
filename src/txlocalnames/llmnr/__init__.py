# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Link-Local Multicast Name Resolution (RFC 4795): wire format, server and
client.
"""
