# -*- test-case-name: txlocalnames.test.test_nbns_packet -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
NetBIOS Name Service packets.

A packet is a 12 byte header followed by question, answer, authority and
additional sections.  Every name is written as one length byte followed by
its first-level encoding (see L{txlocalnames.nbns.name}).
"""

import struct
from io import BytesIO

import attr

from twisted.python.util import FancyEqMixin

from txlocalnames.error import (
    NameTooLong, TruncatedPacket, TruncatedName, TruncatedRData)
from txlocalnames.nbns.name import NetBIOSName


NBNS_PORT = 137

# Largest datagram sent or read over UDP (RFC 1001 section 15.1.1).
MAX_UDP_SIZE = 576
MAX_TCP_MESSAGE_SIZE = 65535

# Operation codes, already in place in the flags word
OPCODE_MASK = 0x7800
OPCODE_QUERY = 0x0000
OPCODE_REGISTRATION = 0x2800
OPCODE_RELEASE = 0x3000
OPCODE_WACK = 0x3800
OPCODE_REFRESH = 0x4000
OPCODE_REDIRECT = 0x4800
OPCODE_CONFLICT = 0x5000
OPCODE_NODE_STATUS = 0x2100

OPCODES = {
    OPCODE_QUERY: "QUERY",
    OPCODE_REGISTRATION: "REGISTRATION",
    OPCODE_RELEASE: "RELEASE",
    OPCODE_WACK: "WACK",
    OPCODE_REFRESH: "REFRESH",
    OPCODE_REDIRECT: "REDIRECT",
    OPCODE_CONFLICT: "CONFLICT",
}

# Response codes
RCODE_MASK = 0x000F
RCODE_SUCCESS = 0
RCODE_FORMAT_ERROR = 1
RCODE_SERVER_ERROR = 2
RCODE_NAME_ERROR = 3
RCODE_NOT_IMPLEMENTED = 4
RCODE_REFUSED = 5
RCODE_ACTIVE = 6
RCODE_CONFLICT = 7

# Flags
FLAG_RESPONSE = 0x8000
FLAG_AUTHORITATIVE = 0x0400
FLAG_TRUNCATED = 0x0200
FLAG_RECURSION = 0x0100
FLAG_BROADCAST = 0x0010
FLAG_GROUP = 0x0080

# Group bit of the NB_FLAGS word heading 6 byte NB RDATA.
NB_FLAG_GROUP = 0x8000

TYPE_NB = 0x0020
TYPE_NBSTAT = 0x0021
CLASS_IN = 0x0001

# TTL of the answers to name queries.
DEFAULT_TTL = 86400

HEADER_SIZE = 12



def readPrecisely(strio, l, exception=TruncatedPacket):
    """
    Read exactly C{l} bytes from C{strio}.

    @raise TruncatedPacket: (or C{exception}) if fewer bytes are available.
    """
    buff = strio.read(l)
    if len(buff) < l:
        raise exception(l, len(buff))
    return buff



def encodeName(name):
    """
    Encode C{name} as its first-level encoding prefixed by a length byte.

    @type name: L{NetBIOSName}
    @rtype: L{bytes}

    @raise NameTooLong: If the encoded name is longer than 255 bytes.
    @raise ValidationError: If the name is not valid.
    """
    encoded = name.firstLevelEncode().encode("latin-1")
    if len(encoded) > 255:
        raise NameTooLong(str(name))
    return struct.pack("!B", len(encoded)) + encoded



def _readName(strio):
    length = readPrecisely(strio, 1, TruncatedName)[0]
    encoded = readPrecisely(strio, length, TruncatedName)
    return NetBIOSName.firstLevelDecode(encoded.decode("latin-1"))



@attr.s
class Header:
    """
    The fixed part of a packet.
    """
    transactionID = attr.ib(default=0)
    flags = attr.ib(default=0)
    questions = attr.ib(default=0)
    answers = attr.ib(default=0)
    authority = attr.ib(default=0)
    additional = attr.ib(default=0)

    fmt = "!6H"

    def encode(self, strio):
        strio.write(struct.pack(
            self.fmt, self.transactionID, self.flags, self.questions,
            self.answers, self.authority, self.additional))


    def decode(self, strio):
        (self.transactionID, self.flags, self.questions, self.answers,
         self.authority, self.additional) = struct.unpack(
             self.fmt, readPrecisely(strio, HEADER_SIZE))



@attr.s
class Question:
    """
    An entry of the question section.

    @type name: L{NetBIOSName}
    """
    name = attr.ib(default=None)
    type = attr.ib(default=TYPE_NB)
    cls = attr.ib(default=CLASS_IN)

    def encode(self, strio):
        strio.write(encodeName(self.name))
        strio.write(struct.pack("!HH", self.type, self.cls))


    def decode(self, strio):
        self.name = _readName(strio)
        self.type, self.cls = struct.unpack("!HH", readPrecisely(strio, 4))



@attr.s
class ResourceRecord:
    """
    An entry of the answer, authority or additional sections.

    @type name: L{NetBIOSName}

    @ivar data: The RDATA; for name records, an IPv4 address, optionally
        preceded by the 2 byte NB_FLAGS word.
    @type data: L{bytes}
    """
    name = attr.ib(default=None)
    type = attr.ib(default=TYPE_NB)
    cls = attr.ib(default=CLASS_IN)
    ttl = attr.ib(default=0)
    data = attr.ib(default=b"")

    @property
    def rdlength(self):
        return len(self.data)


    def encode(self, strio):
        strio.write(encodeName(self.name))
        strio.write(struct.pack(
            "!HHIH", self.type, self.cls, self.ttl, len(self.data)))
        strio.write(self.data)


    def decode(self, strio):
        self.name = _readName(strio)
        self.type, self.cls, self.ttl, rdlength = struct.unpack(
            "!HHIH", readPrecisely(strio, 10))
        self.data = readPrecisely(strio, rdlength, TruncatedRData)



class Packet(FancyEqMixin):
    """
    A NetBIOS Name Service packet.

    Section counts are not stored; L{header} computes them from the
    sections.

    @ivar transactionID: The 16-bit transaction ID.
    @ivar flags: The flags word, holding the opcode and response code.
    """
    compareAttributes = (
        "transactionID", "flags", "questions", "answers", "authority",
        "additional")

    def __init__(self, transactionID=0, flags=0):
        self.transactionID = transactionID
        self.flags = flags
        self.questions = []
        self.answers = []
        self.authority = []
        self.additional = []


    def header(self):
        """
        @return: The header this packet is encoded with.
        @rtype: L{Header}
        """
        return Header(
            self.transactionID, self.flags, len(self.questions),
            len(self.answers), len(self.authority), len(self.additional))


    def opcode(self):
        return self.flags & OPCODE_MASK


    def rcode(self):
        return self.flags & RCODE_MASK


    def isResponse(self):
        return bool(self.flags & FLAG_RESPONSE)


    def encode(self, strio):
        self.header().encode(strio)
        for q in self.questions:
            q.encode(strio)
        for section in (self.answers, self.authority, self.additional):
            for rr in section:
                rr.encode(strio)


    def decode(self, strio):
        """
        Decode a whole packet from C{strio}.

        @raise FramingError: If the packet is truncated.
        @raise ValidationError: If a name is not validly encoded.
        """
        header = Header()
        header.decode(strio)
        self.transactionID = header.transactionID
        self.flags = header.flags
        self.questions = []
        for i in range(header.questions):
            q = Question()
            q.decode(strio)
            self.questions.append(q)
        self.answers = self._decodeRecords(strio, header.answers)
        self.authority = self._decodeRecords(strio, header.authority)
        self.additional = self._decodeRecords(strio, header.additional)


    def _decodeRecords(self, strio, count):
        records = []
        for i in range(count):
            rr = ResourceRecord()
            rr.decode(strio)
            records.append(rr)
        return records


    def toStr(self):
        """
        Encode this packet.

        @rtype: L{bytes}
        """
        strio = BytesIO()
        self.encode(strio)
        return strio.getvalue()


    def fromStr(self, data):
        """
        Replace the contents of this packet with the decoding of C{data}.
        """
        self.decode(BytesIO(data))


    def __repr__(self):
        return "<Packet id=%d opcode=%s rcode=%d flags=0x%04x %d/%d/%d/%d>" % (
            self.transactionID, OPCODES.get(self.opcode(), "UNKNOWN"),
            self.rcode(), self.flags, len(self.questions), len(self.answers),
            len(self.authority), len(self.additional))



def decodePacket(data):
    """
    Decode C{data} into a new L{Packet}.

    @type data: L{bytes}
    @rtype: L{Packet}
    """
    p = Packet()
    p.fromStr(data)
    return p
