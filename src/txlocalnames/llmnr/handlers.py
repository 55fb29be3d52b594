# -*- test-case-name: txlocalnames.test.test_llmnr_handlers -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Ready-made handlers for L{txlocalnames.llmnr.server.Server}.
"""

import json

from zope.interface import implementer

from twisted.logger import Logger

from txlocalnames.error import InvalidAddress
from txlocalnames.llmnr import wire
from txlocalnames.llmnr.interfaces import IHandler


_log = Logger()

_SECTIONS = ("Questions", "Answers", "Authority", "Additional")



def _sections(message):
    return zip(_SECTIONS, (message.questions, message.answers,
                           message.authority, message.additional))



def _flagNames(message):
    return [wire.flagToString(f) for f in sorted(wire.FLAGS, reverse=True)
            if message.flags & f]



def _describeRecord(record):
    if isinstance(record, wire.Question):
        return "%s %s %s" % (
            record.name, wire.typeToString(record.type),
            wire.classToString(record.cls))
    address = None
    if record.type in (wire.TYPE_A, wire.TYPE_AAAA):
        address = wire.rdataToIP(record.data)
    return "%s %s %s ttl=%d rdata=%s" % (
        record.name, wire.typeToString(record.type),
        wire.classToString(record.cls), record.ttl,
        address if address is not None else record.data.hex())



def formatPacket(message, remoteAddr):
    """
    Render C{message} as a tree, one line per record.

    @rtype: L{str}
    """
    lines = ["LLMNR %s 0x%04x from %s" % (
        "response" if message.isResponse() else "query", message.id,
        remoteAddr)]
    lines.append(" ├─ Flags: %s (opcode %d, rcode %d)" % (
        "|".join(_flagNames(message)) or "none", message.opcode(),
        message.rcode()))
    sections = list(_sections(message))
    for i, (title, records) in enumerate(sections):
        last = i == len(sections) - 1
        lines.append(" %s─ %s: (%d)" % (
            "└" if last else "├", title, len(records)))
        for j, record in enumerate(records):
            lines.append(" %s   %s─ %s" % (
                " " if last else "│",
                "└" if j == len(records) - 1 else "├",
                _describeRecord(record)))
    return "\n".join(lines)



def describePacket(server, remoteAddr, writer, message):
    """
    Log a tree dump of every query received, then pass it on.

    The dump is emitted as one log event, so dumps of concurrent queries do
    not interleave.
    """
    _log.info("{dump}", dump=formatPacket(message, remoteAddr))
    return True



def _recordToJSON(record):
    result = {
        "name": record.name,
        "type": wire.typeToString(record.type),
        "class": wire.classToString(record.cls),
    }
    if isinstance(record, wire.ResourceRecord):
        result["ttl"] = record.ttl
        result["rdata"] = record.data.hex()
        if record.type in (wire.TYPE_A, wire.TYPE_AAAA):
            result["address"] = wire.rdataToIP(record.data)
    return result



def packetToJSON(message, remoteAddr):
    """
    Render C{message} as a JSON object.

    @rtype: L{str}
    """
    document = {
        "remote": list(remoteAddr),
        "id": message.id,
        "flags": _flagNames(message),
        "opcode": message.opcode(),
        "rcode": message.rcode(),
    }
    for title, records in _sections(message):
        document[title.lower()] = [_recordToJSON(r) for r in records]
    return json.dumps(document, sort_keys=True)



def describePacketJSON(server, remoteAddr, writer, message):
    """
    Log every query received as JSON, then pass it on.
    """
    _log.info("{json}", json=packetToJSON(message, remoteAddr))
    return True



def _normalize(name):
    return name.rstrip(".").lower()



@implementer(IHandler)
class StaticAnswerHandler:
    """
    Answer A and AAAA queries for a fixed set of names.

    Queries for other names are passed on to the next handler; answered
    queries are not.

    @ivar answers: Maps lower-case names to lists of IPv4 and IPv6
        addresses.
    """

    def __init__(self, answers=None):
        self.answers = {}
        for name, addresses in (answers or {}).items():
            for address in addresses:
                self.addAnswer(name, address)


    def addAnswer(self, name, address):
        """
        Answer queries for C{name} with C{address}.

        @raise txlocalnames.error.InvalidAddress: If C{address} is not an
            IPv4 or IPv6 address.
        @raise txlocalnames.error.ValidationError: If C{name} is not a
            valid domain name.
        """
        wire.validateDomainName(name)
        if wire.ipToRData(address) is None:
            raise InvalidAddress(address)
        self.answers.setdefault(_normalize(name), []).append(address)


    def run(self, server, remoteAddr, writer, message):
        response = wire.createResponseFromMessage(message)
        for q in message.questions:
            addresses = self.answers.get(_normalize(q.name))
            if not addresses or q.cls not in (wire.CLASS_IN, wire.CLASS_ANY):
                continue
            response.questions.append(q)
            for address in addresses:
                if (q.type in (wire.TYPE_A, wire.TYPE_ALL)
                        and wire.ipv4ToRData(address) is not None):
                    response.addAnswerClassINTypeA(q.name, address)
                elif (q.type in (wire.TYPE_AAAA, wire.TYPE_ALL)
                        and wire.ipv6ToRData(address) is not None):
                    response.addAnswerClassINTypeAAAA(q.name, address)
        if not response.answers:
            return True
        writer.writeMessage(response)
        return False
