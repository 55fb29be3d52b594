# -*- test-case-name: txlocalnames.test.test_error -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Exceptions raised by L{txlocalnames}.

Everything raised or errbacked by this package is a L{LocalNamesError}.
The intermediate classes group errors by the way they surface:

  - L{ValidationError}: bad input, raised synchronously to the caller.
  - L{FramingError}: undecodable bytes; servers log these and drop the
    datagram.
  - L{ProtocolError}: a well-formed message that makes no sense here.
  - L{TransportError}: the socket underneath could not be used.
  - L{QueryTimeoutError}: no answer arrived in time.
  - L{RegistryError}: a NetBIOS name registry operation was refused.
"""

from twisted.internet import defer


class LocalNamesError(Exception):
    """
    Base class for all errors raised by L{txlocalnames}.
    """



class ValidationError(LocalNamesError, ValueError):
    """
    A name, label or address is not acceptable.
    """



class NameTooLong(ValidationError):
    """
    A domain name is longer than 255 bytes, or a NetBIOS name is longer
    than 16 bytes.
    """



class LabelTooLong(ValidationError):
    """
    A domain name label is longer than 63 bytes.
    """



class EmptyLabel(ValidationError):
    """
    A domain name has an empty label between two dots.
    """



class InvalidAddress(ValidationError):
    """
    A string could not be parsed as an IPv4 or IPv6 address.
    """



class InvalidNetBIOSName(ValidationError):
    """
    A NetBIOS name is empty or starts with C{*}.
    """



class NetBIOSNameTooLong(InvalidNetBIOSName, NameTooLong):
    """
    A NetBIOS name is longer than 16 bytes.
    """



class InvalidScopeID(ValidationError):
    """
    A NetBIOS scope identifier is not a valid domain name.
    """



class InvalidEncodedLength(ValidationError):
    """
    A first-level encoded NetBIOS name is not exactly 32 characters long.
    """



class InvalidEncodingCharacter(ValidationError):
    """
    A first-level encoded NetBIOS name contains a character outside of
    C{A} to C{P}.
    """



class FramingError(LocalNamesError):
    """
    A message could not be decoded.
    """



class TruncatedPacket(FramingError, EOFError):
    """
    A message ended before a fixed-size field or section was complete.
    """



class TruncatedName(TruncatedPacket):
    """
    A domain name ended before its terminating zero-length label.
    """



class TruncatedPointer(TruncatedPacket):
    """
    A compression pointer was cut off after its first byte.
    """



class TruncatedRData(TruncatedPacket):
    """
    A resource record is shorter than its RDLENGTH claims.
    """



class InvalidPointer(FramingError):
    """
    A compression pointer refers forward, or to itself.
    """



class ProtocolError(LocalNamesError):
    """
    A message was decoded but is not acceptable in its context.
    """



class TransportError(LocalNamesError):
    """
    A message could not be sent or received.
    """



class ServerClosedError(TransportError):
    """
    A response was written after its server was closed.
    """



class ClientClosedError(TransportError):
    """
    A query was pending, or issued, after its client was closed.
    """



class QueryTimeoutError(LocalNamesError, defer.TimeoutError):
    """
    No response arrived before the timeout.

    @ivar id: The transaction ID of the query which timed out.
    """
    def __init__(self, id, *args):
        LocalNamesError.__init__(self, id, *args)
        self.id = id



class LLMNRQueryTimeoutError(QueryTimeoutError):
    """
    An LLMNR query received no response.
    """



class RegistryError(LocalNamesError):
    """
    A NetBIOS name registry operation failed.

    @ivar name: The NetBIOS name the operation was about.
    """
    def __init__(self, name, *args):
        LocalNamesError.__init__(self, name, *args)
        self.name = name



class NameConflictError(RegistryError):
    """
    A registration conflicts with an existing registration.
    """



class NameNotFoundError(RegistryError):
    """
    The name is not registered, or is hidden by a conflict.
    """



class OwnerMismatchError(RegistryError):
    """
    The address given is not an owner of the name.
    """



class NoHandlersError(LocalNamesError):
    """
    A server was started without any handlers registered.
    """



class UnknownNetworkError(LocalNamesError, ValueError):
    """
    A server was configured with a network other than C{udp}, C{udp4} or
    C{udp6}.
    """



__all__ = [
    "LocalNamesError",
    "ValidationError", "NameTooLong", "LabelTooLong", "EmptyLabel",
    "InvalidAddress", "InvalidNetBIOSName", "NetBIOSNameTooLong",
    "InvalidScopeID", "InvalidEncodedLength", "InvalidEncodingCharacter",
    "FramingError", "TruncatedPacket", "TruncatedName", "TruncatedPointer",
    "TruncatedRData", "InvalidPointer",
    "ProtocolError",
    "TransportError", "ServerClosedError", "ClientClosedError",
    "QueryTimeoutError", "LLMNRQueryTimeoutError",
    "RegistryError", "NameConflictError", "NameNotFoundError",
    "OwnerMismatchError",
    "NoHandlersError", "UnknownNetworkError",
]
