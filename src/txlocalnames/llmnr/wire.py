# -*- test-case-name: txlocalnames.test.test_llmnr_wire -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
LLMNR wire format (RFC 4795).

LLMNR messages use the DNS message layout: a 12 byte header followed by
question, answer, authority and additional sections.  Names are sequences
of length-prefixed labels and may use DNS compression pointers.

Names are handled as L{str}.  Labels are UTF-8 on the wire; bytes which are
not valid UTF-8 are carried through C{surrogateescape} so that decoding and
re-encoding a name never changes its wire form.
"""

import socket
import struct
from io import BytesIO

import attr

from twisted.python.util import FancyEqMixin

from txlocalnames.error import (
    NameTooLong, LabelTooLong, EmptyLabel, InvalidAddress, TruncatedPacket,
    TruncatedName, TruncatedPointer, TruncatedRData, InvalidPointer)


LLMNR_PORT = 5355
IPV4_MULTICAST_ADDRESS = "224.0.0.252"
IPV6_MULTICAST_ADDRESS = "FF02::1:3"

MAX_LABEL_LENGTH = 63
MAX_NAME_LENGTH = 255
HEADER_SIZE = 12
MAX_PACKET_SIZE = 512

# Header flags
FLAG_QR = 0x8000
FLAG_C = 0x0400
FLAG_TC = 0x0200
FLAG_T = 0x0100

OPCODE_MASK = 0x7800
OPCODE_SHIFT = 11
RCODE_MASK = 0x000F

OPCODE_QUERY = 0

FLAGS = {
    FLAG_QR: "QR",
    FLAG_C: "C",
    FLAG_TC: "TC",
    FLAG_T: "T",
}

# Types
TYPE_A = 1
TYPE_NS = 2
TYPE_CNAME = 5
TYPE_SOA = 6
TYPE_PTR = 12
TYPE_MX = 15
TYPE_TXT = 16
TYPE_AAAA = 28
TYPE_SRV = 33
TYPE_OPT = 41
TYPE_AXFR = 252
TYPE_ALL = 255

QUERY_TYPES = {
    TYPE_A: "A",
    TYPE_NS: "NS",
    TYPE_CNAME: "CNAME",
    TYPE_SOA: "SOA",
    TYPE_PTR: "PTR",
    TYPE_MX: "MX",
    TYPE_TXT: "TXT",
    TYPE_AAAA: "AAAA",
    TYPE_SRV: "SRV",
    TYPE_OPT: "OPT",
    TYPE_AXFR: "AXFR",
    TYPE_ALL: "ALL",
}

# Classes
CLASS_IN = 1
CLASS_CS = 2
CLASS_CH = 3
CLASS_HS = 4
CLASS_NONE = 254
CLASS_ANY = 255
CLASS_UNICAST = 0x8001

QUERY_CLASSES = {
    CLASS_IN: "IN",
    CLASS_CS: "CS",
    CLASS_CH: "CH",
    CLASS_HS: "HS",
    CLASS_NONE: "NONE",
    CLASS_ANY: "ANY",
    CLASS_UNICAST: "UNICAST",
}

# TTL given to answers built by the A and AAAA helpers.
DEFAULT_TTL = 30



def flagToString(flag):
    """
    @param flag: One of the C{FLAG_*} constants.
    @return: The flag's short name, or C{"Unknown"}.
    """
    return FLAGS.get(flag, "Unknown")



def typeToString(type):
    """
    @param type: A record type.
    @return: The type's mnemonic, or C{"Unknown"}.
    """
    return QUERY_TYPES.get(type, "Unknown")



def classToString(cls):
    """
    @param cls: A record class.
    @return: The class' mnemonic, or C{"Unknown"}.
    """
    return QUERY_CLASSES.get(cls, "Unknown")



def ipv4ToRData(address):
    """
    Convert a dotted-quad IPv4 address to the 4 bytes of an A record.

    @type address: L{str}
    @return: The packed address, or L{None} if C{address} is not an IPv4
        address.
    @rtype: L{bytes} or L{None}
    """
    try:
        return socket.inet_pton(socket.AF_INET, address)
    except (OSError, ValueError, TypeError):
        return None



def ipv6ToRData(address):
    """
    Convert an IPv6 address to the 16 bytes of an AAAA record.

    @type address: L{str}
    @return: The packed address, or L{None} if C{address} is not an IPv6
        address.
    @rtype: L{bytes} or L{None}
    """
    try:
        return socket.inet_pton(socket.AF_INET6, address)
    except (OSError, ValueError, TypeError):
        return None



def ipToRData(address):
    """
    Convert an IPv4 or IPv6 address to packed form.

    @return: 4 or 16 bytes, or L{None} if C{address} is neither.
    """
    data = ipv4ToRData(address)
    if data is None:
        data = ipv6ToRData(address)
    return data



def rdataToIP(data):
    """
    Render 4 or 16 bytes of address data as text.

    @type data: L{bytes}
    @return: The address, or L{None} for any other length.
    @rtype: L{str} or L{None}
    """
    if len(data) == 4:
        return socket.inet_ntop(socket.AF_INET, data)
    if len(data) == 16:
        return socket.inet_ntop(socket.AF_INET6, data)
    return None



def _labels(name):
    """
    Split C{name} into encoded labels, without any checks.
    """
    if name in ("", "."):
        return []
    if name.endswith("."):
        name = name[:-1]
    return [label.encode("utf-8", "surrogateescape")
            for label in name.split(".")]



def validateDomainName(name):
    """
    Check that C{name} can be put on the wire.

    C{""} and C{"."} both denote the root name and are valid.

    @type name: L{str}

    @raise NameTooLong: If the name is longer than 255 bytes.
    @raise LabelTooLong: If any label is longer than 63 bytes.
    @raise EmptyLabel: If the name contains two consecutive dots, or starts
        with a dot.
    """
    if len(name.encode("utf-8", "surrogateescape")) > MAX_NAME_LENGTH:
        raise NameTooLong(name)
    for label in _labels(name):
        if len(label) > MAX_LABEL_LENGTH:
            raise LabelTooLong(name, label)
        if not label:
            raise EmptyLabel(name)



def encodeDomainName(name):
    """
    Encode C{name} as a sequence of length-prefixed labels.

    Compression is never used when encoding.

    @type name: L{str}
    @rtype: L{bytes}

    @raise NameTooLong: See L{validateDomainName}.
    @raise LabelTooLong: See L{validateDomainName}.
    @raise EmptyLabel: See L{validateDomainName}.
    """
    validateDomainName(name)
    strio = BytesIO()
    for label in _labels(name):
        strio.write(struct.pack("!B", len(label)))
        strio.write(label)
    strio.write(b"\x00")
    return strio.getvalue()



def decodeDomainName(data, offset):
    """
    Decode the name starting at C{offset} in the message C{data}.

    A compression pointer must refer to a position strictly before the
    start of the walk it is found in.  Following a pointer starts a new
    walk at its target, so every pointer followed moves strictly backwards
    and decoding always terminates.

    @param data: The whole message.
    @type data: L{bytes}

    @param offset: Where the name starts in C{data}.
    @type offset: L{int}

    @return: The decoded name (C{"."} for the root name) and the offset of
        the first byte after it.
    @rtype: L{tuple} of L{str} and L{int}

    @raise TruncatedName: If C{data} ends inside a label.
    @raise TruncatedPointer: If C{data} ends inside a pointer.
    @raise InvalidPointer: If a pointer does not refer backwards.
    @raise LabelTooLong: If a length byte uses the reserved label types.
    @raise NameTooLong: If the decoded name is longer than 255 bytes.
    """
    labels = []
    end = None
    start = offset
    length = 0
    while True:
        if offset >= len(data):
            raise TruncatedName(offset)
        l = data[offset]
        if l == 0:
            offset += 1
            break
        if l & 0xC0 == 0xC0:
            if offset + 2 > len(data):
                raise TruncatedPointer(offset)
            target = struct.unpack("!H", data[offset:offset + 2])[0] & 0x3FFF
            if target >= start:
                raise InvalidPointer(offset, target)
            if end is None:
                end = offset + 2
            offset = start = target
            continue
        if l > MAX_LABEL_LENGTH:
            raise LabelTooLong(offset, l)
        label = data[offset + 1:offset + 1 + l]
        if len(label) < l:
            raise TruncatedName(offset)
        length += l + (1 if labels else 0)
        if length > MAX_NAME_LENGTH:
            raise NameTooLong(offset)
        labels.append(label.decode("utf-8", "surrogateescape"))
        offset += 1 + l
    if end is None:
        end = offset
    if not labels:
        return ".", end
    return ".".join(labels), end



def readPrecisely(strio, l, exception=TruncatedPacket):
    """
    Read exactly C{l} bytes from C{strio}.

    @raise TruncatedPacket: (or C{exception}) if fewer bytes are available.
    """
    buff = strio.read(l)
    if len(buff) < l:
        raise exception(l, len(buff))
    return buff



def _readName(strio):
    """
    Decode a name at the current position of C{strio}, which must hold the
    whole message, and move past it.
    """
    name, offset = decodeDomainName(strio.getvalue(), strio.tell())
    strio.seek(offset)
    return name



def _sameName(a, b):
    return a.rstrip(".").lower() == b.rstrip(".").lower()



@attr.s
class Question:
    """
    An entry of the question section.

    @ivar name: The name asked about.
    @type name: L{str}

    @ivar type: The record type wanted.
    @ivar cls: The record class wanted.
    """
    name = attr.ib(default=".")
    type = attr.ib(default=TYPE_A)
    cls = attr.ib(default=CLASS_IN)

    def encode(self, strio):
        strio.write(encodeDomainName(self.name))
        strio.write(struct.pack("!HH", self.type, self.cls))


    def decode(self, strio):
        self.name = _readName(strio)
        self.type, self.cls = struct.unpack("!HH", readPrecisely(strio, 4))


    def __str__(self):
        return "<Question %s %s %s>" % (
            self.name, typeToString(self.type), classToString(self.cls))



@attr.s
class ResourceRecord:
    """
    An entry of the answer, authority or additional sections.

    @ivar data: The RDATA.  Its length is the record's RDLENGTH.
    @type data: L{bytes}
    """
    name = attr.ib(default=".")
    type = attr.ib(default=TYPE_A)
    cls = attr.ib(default=CLASS_IN)
    ttl = attr.ib(default=0)
    data = attr.ib(default=b"")

    @property
    def rdlength(self):
        return len(self.data)


    def encode(self, strio):
        strio.write(encodeDomainName(self.name))
        strio.write(struct.pack(
            "!HHIH", self.type, self.cls, self.ttl, len(self.data)))
        strio.write(self.data)


    def decode(self, strio):
        self.name = _readName(strio)
        self.type, self.cls, self.ttl, rdlength = struct.unpack(
            "!HHIH", readPrecisely(strio, 10))
        self.data = readPrecisely(strio, rdlength, TruncatedRData)


    def __str__(self):
        address = None
        if self.type in (TYPE_A, TYPE_AAAA):
            address = rdataToIP(self.data)
        return "<RR %s %s %s ttl=%d %s>" % (
            self.name, typeToString(self.type), classToString(self.cls),
            self.ttl, address if address is not None else self.data.hex())



class Message(FancyEqMixin):
    """
    An LLMNR message.

    The section counts of the header are not stored: they are always the
    lengths of L{questions}, L{answers}, L{authority} and L{additional}.

    @ivar id: The 16-bit transaction ID.
    @ivar flags: The 16-bit flags word, including the opcode and response
        code.
    """
    headerFmt = "!6H"
    headerSize = HEADER_SIZE

    compareAttributes = (
        "id", "flags", "questions", "answers", "authority", "additional")

    def __init__(self, id=0, flags=0):
        self.id = id
        self.flags = flags
        self.questions = []
        self.answers = []
        self.authority = []
        self.additional = []


    @property
    def qdCount(self):
        return len(self.questions)


    @property
    def anCount(self):
        return len(self.answers)


    @property
    def nsCount(self):
        return len(self.authority)


    @property
    def arCount(self):
        return len(self.additional)


    def isQuery(self):
        return not self.flags & FLAG_QR


    def isResponse(self):
        return bool(self.flags & FLAG_QR)


    def setQuery(self):
        self.flags &= ~FLAG_QR


    def setResponse(self):
        self.flags |= FLAG_QR


    def opcode(self):
        return (self.flags & OPCODE_MASK) >> OPCODE_SHIFT


    def rcode(self):
        return self.flags & RCODE_MASK


    def addQuestion(self, name, type=TYPE_A, cls=CLASS_IN):
        """
        Append a question.

        @raise ValidationError: If C{name} is not a valid domain name.
        """
        validateDomainName(name)
        self.questions.append(Question(name, type, cls))


    def addAnswer(self, rr):
        """
        Append an answer record.

        @type rr: L{ResourceRecord}
        @raise ValidationError: If C{rr.name} is not a valid domain name.
        """
        validateDomainName(rr.name)
        self.answers.append(rr)


    def _addAddressAnswer(self, name, type, data, address):
        if data is None:
            raise InvalidAddress(address)
        self.addAnswer(ResourceRecord(name, type, CLASS_IN, DEFAULT_TTL, data))
        for q in self.questions:
            if _sameName(q.name, name):
                break
        else:
            self.questions.append(Question(name, type, CLASS_IN))


    def addAnswerClassINTypeA(self, name, address):
        """
        Answer C{name} with the IPv4 C{address}, with a TTL of 30 seconds.

        A matching question is added too, unless one for C{name} is already
        present.

        @raise InvalidAddress: If C{address} is not an IPv4 address.
        @raise ValidationError: If C{name} is not a valid domain name.
        """
        self._addAddressAnswer(name, TYPE_A, ipv4ToRData(address), address)


    def addAnswerClassINTypeAAAA(self, name, address):
        """
        Answer C{name} with the IPv6 C{address}, with a TTL of 30 seconds.

        @see: L{addAnswerClassINTypeA}
        @raise InvalidAddress: If C{address} is not an IPv6 address.
        """
        self._addAddressAnswer(name, TYPE_AAAA, ipv6ToRData(address), address)


    def validate(self):
        """
        Check every name in the message.

        @raise ValidationError: For the first name that cannot be encoded.
        """
        for q in self.questions:
            validateDomainName(q.name)
        for section in (self.answers, self.authority, self.additional):
            for rr in section:
                validateDomainName(rr.name)


    def encode(self, strio):
        strio.write(struct.pack(
            self.headerFmt, self.id, self.flags, self.qdCount, self.anCount,
            self.nsCount, self.arCount))
        for q in self.questions:
            q.encode(strio)
        for section in (self.answers, self.authority, self.additional):
            for rr in section:
                rr.encode(strio)


    def decode(self, strio):
        """
        Decode a whole message from C{strio}, which must be positioned at
        the start of the message.  Bytes after the last section are ignored.

        @raise FramingError: If the message is truncated or malformed.
        @raise ValidationError: If a name uses reserved label types or is
            too long.
        """
        header = readPrecisely(strio, self.headerSize)
        (self.id, self.flags, qdCount, anCount,
         nsCount, arCount) = struct.unpack(self.headerFmt, header)
        self.questions = []
        for i in range(qdCount):
            q = Question()
            q.decode(strio)
            self.questions.append(q)
        self.answers = self._decodeRecords(strio, anCount)
        self.authority = self._decodeRecords(strio, nsCount)
        self.additional = self._decodeRecords(strio, arCount)


    def _decodeRecords(self, strio, count):
        records = []
        for i in range(count):
            rr = ResourceRecord()
            rr.decode(strio)
            records.append(rr)
        return records


    def toStr(self):
        """
        Encode this message.

        @rtype: L{bytes}
        """
        strio = BytesIO()
        self.encode(strio)
        return strio.getvalue()


    def fromStr(self, data):
        """
        Replace the contents of this message with the decoding of C{data}.
        """
        self.decode(BytesIO(data))


    def __repr__(self):
        flags = [flagToString(f) for f in sorted(FLAGS, reverse=True)
                 if self.flags & f]
        return "<Message id=%d flags=%s opcode=%d rcode=%d %s>" % (
            self.id, "|".join(flags) or "0", self.opcode(), self.rcode(),
            " ".join("%s=%d" % (n, c) for n, c in [
                ("qd", self.qdCount), ("an", self.anCount),
                ("ns", self.nsCount), ("ar", self.arCount)]))



def decodeMessage(data):
    """
    Decode C{data} into a new L{Message}.

    @type data: L{bytes}
    @rtype: L{Message}
    """
    m = Message()
    m.fromStr(data)
    return m



def createResponseFromMessage(message):
    """
    Start a response to C{message}.

    @return: An empty message with the ID and flags of C{message} and the
        response flag set.
    @rtype: L{Message}
    """
    return Message(message.id, message.flags | FLAG_QR)
