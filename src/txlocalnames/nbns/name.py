# -*- test-case-name: txlocalnames.test.test_nbns_name -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
NetBIOS names and their first-level encoding (RFC 1001 section 14.1).

A NetBIOS name is up to 16 bytes, padded with spaces to exactly 16.  The
first-level encoding turns every byte into two characters from C{A} to C{P},
one per nibble, giving 32 characters, optionally followed by C{.} and the
scope identifier.

Names are handled as L{str}; each character stands for one byte (Latin-1),
so any byte value can appear in a name.
"""

import re

import attr

from txlocalnames.error import (
    InvalidNetBIOSName, NetBIOSNameTooLong, InvalidScopeID,
    InvalidEncodedLength, InvalidEncodingCharacter)


MAX_NAME_LENGTH = 16
ENCODED_LENGTH = 32

_LABEL = re.compile(r"\A[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\Z")



def isValidScopeID(scopeID):
    """
    Whether C{scopeID} is a dotted sequence of labels of 1 to 63 letters,
    digits and hyphens, none starting or ending with a hyphen.

    @type scopeID: L{str}
    @rtype: L{bool}
    """
    if not scopeID or len(scopeID) > 255:
        return False
    return all(_LABEL.match(label) for label in scopeID.split("."))



def _nameBytes(name):
    try:
        return name.encode("latin-1")
    except UnicodeEncodeError:
        raise InvalidNetBIOSName(name)



@attr.s(frozen=True)
class NetBIOSName:
    """
    A NetBIOS name with its scope.

    @ivar name: The name, without padding.
    @type name: L{str}

    @ivar scopeID: The scope identifier, or C{""} for none.
    @type scopeID: L{str}
    """
    name = attr.ib()
    scopeID = attr.ib(default="")

    def validate(self):
        """
        @raise InvalidNetBIOSName: If the name is empty or all spaces, starts
            with C{*}, or has characters that are not single bytes.
        @raise NetBIOSNameTooLong: If the name is longer than 16 bytes.
        @raise InvalidScopeID: If the scope identifier is not a valid
            domain name.
        """
        raw = _nameBytes(self.name)
        if not raw.rstrip(b" "):
            raise InvalidNetBIOSName(self.name)
        if len(raw) > MAX_NAME_LENGTH:
            raise NetBIOSNameTooLong(self.name)
        if raw.startswith(b"*"):
            raise InvalidNetBIOSName(self.name)
        if self.scopeID and not isValidScopeID(self.scopeID):
            raise InvalidScopeID(self.scopeID)


    def firstLevelEncode(self):
        """
        @return: The 32 character encoded name, followed by C{.scopeID} if
            there is a scope.
        @rtype: L{str}

        @raise ValidationError: See L{validate}.
        """
        self.validate()
        padded = _nameBytes(self.name).ljust(MAX_NAME_LENGTH, b" ")
        encoded = "".join(
            chr(ord("A") + (b >> 4)) + chr(ord("A") + (b & 0x0F))
            for b in padded)
        if self.scopeID:
            encoded += "." + self.scopeID
        return encoded


    @classmethod
    def firstLevelDecode(cls, encoded):
        """
        Invert L{firstLevelEncode}.

        @type encoded: L{str}
        @rtype: L{NetBIOSName}

        @raise InvalidEncodedLength: If the part before the first C{.} is
            not 32 characters long.
        @raise InvalidEncodingCharacter: If that part has characters
            outside of C{A} to C{P}.
        @raise InvalidScopeID: If the scope is not a valid domain name.
        @raise InvalidNetBIOSName: If the decoded name is one L{validate}
            rejects, such as the C{*} wildcard or an all-space name.
        """
        prefix, dot, scopeID = encoded.partition(".")
        if len(prefix) != ENCODED_LENGTH:
            raise InvalidEncodedLength(encoded)
        nibbles = []
        for c in prefix:
            n = ord(c) - ord("A")
            if not 0 <= n <= 15:
                raise InvalidEncodingCharacter(encoded, c)
            nibbles.append(n)
        raw = bytes(
            (high << 4) | low
            for high, low in zip(nibbles[0::2], nibbles[1::2]))
        if dot and not isValidScopeID(scopeID):
            raise InvalidScopeID(scopeID)
        decoded = cls(raw.rstrip(b" ").decode("latin-1"), scopeID)
        decoded.validate()
        return decoded


    def __str__(self):
        if self.scopeID:
            return "%s.%s" % (self.name, self.scopeID)
        return self.name



firstLevelDecode = NetBIOSName.firstLevelDecode
