# -*- test-case-name: txlocalnames.test.test_nbns_handler -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Translation of NetBIOS Name Service requests into registry operations,
shared by the UDP and TCP servers.
"""

import socket
import struct

from twisted.internet import defer
from twisted.logger import Logger

from txlocalnames.error import (
    RegistryError, NameConflictError, NameNotFoundError, OwnerMismatchError)
from txlocalnames.nbns import packet
from txlocalnames.nbns.registry import NameType


class _BadRData(Exception):
    """
    The RDATA of a name record is neither 4 nor 6 bytes long.
    """



def _parseNameRData(data):
    """
    Extract the owner of a name record.

    @param data: A packed IPv4 address, or the 6 byte NB form: NB_FLAGS
        followed by the address.

    @return: The dotted-quad address, and whether NB_FLAGS marks a group.
    @rtype: L{tuple} of L{str} and L{bool}

    @raise _BadRData: For any other length.
    """
    if len(data) == 4:
        return socket.inet_ntoa(data), False
    if len(data) == 6:
        nbFlags = struct.unpack("!H", data[:2])[0]
        return socket.inet_ntoa(data[2:]), bool(nbFlags & packet.NB_FLAG_GROUP)
    raise _BadRData(data)



def answerQuestions(registry, questions, response):
    """
    Append a record for every owner of each name in C{questions} to the
    answers of C{response}, and mark it as a group response when a name is
    a group name.

    @type registry: L{NameRegistry}
    @param questions: L{packet.Question}s.
    @type response: L{packet.Packet}

    @return: The questions whose names are not registered.
    @rtype: L{list}
    """
    missing = []
    for q in questions:
        try:
            owners, nameType = registry.query(q.name.name, q.name.scopeID)
        except NameNotFoundError:
            missing.append(q)
            continue
        for owner in owners:
            response.answers.append(packet.ResourceRecord(
                q.name, q.type, q.cls, packet.DEFAULT_TTL,
                socket.inet_aton(owner)))
        if nameType is NameType.GROUP:
            response.flags |= packet.FLAG_GROUP
    return missing



class PacketHandler:
    """
    Builds the response to a request.

    @ivar registry: The L{NameRegistry} requests operate on.

    @ivar redirects: A L{RedirectManager} consulted for name queries first,
        or L{None}.

    @ivar challenger: A L{NameChallenger} used to check whether the owner
        of a unique name still uses it when another node registers it, or
        L{None} to refuse such registrations outright.  When set, name
        queries are answered through its L{NameChallenger.defendName}.
    """
    log = Logger()

    def __init__(self, registry, redirects=None, challenger=None):
        self.registry = registry
        self.redirects = redirects
        self.challenger = challenger


    def handlePacket(self, request, address=None):
        """
        Process C{request}.

        @type request: L{packet.Packet}

        @param address: The C{(host, port)} the request came from; only used
            for logging.

        @return: A L{Deferred} firing with the response L{packet.Packet}, or
            with L{None} if C{request} is itself a response and needs no
            answer.
        """
        if request.isResponse():
            self.log.debug(
                "Ignoring response {id} from {address}",
                id=request.transactionID, address=address)
            return defer.succeed(None)

        response = packet.Packet(
            request.transactionID,
            packet.FLAG_RESPONSE | packet.FLAG_AUTHORITATIVE)
        response.questions = list(request.questions)

        opcode = request.opcode()
        handler = getattr(
            self, "_handle" + packet.OPCODES.get(opcode, "").title(), None)
        if handler is None:
            self.log.debug(
                "Unsupported opcode 0x{opcode:04x} from {address}",
                opcode=opcode, address=address)
            response.flags |= packet.RCODE_NOT_IMPLEMENTED
            return defer.succeed(response)
        return defer.maybeDeferred(handler, request, response)


    def _nameRecords(self, request):
        """
        The records carrying the names to operate on: the answer section, or
        the additional section when there are no answers.
        """
        return request.answers or request.additional


    def _handleQuery(self, request, response):
        if self.redirects is not None and self.redirects.handleRedirect(
                request, response):
            return response
        if self.challenger is not None:
            missing = self.challenger.defendName(request, response)
        else:
            missing = answerQuestions(
                self.registry, request.questions, response)
        if missing:
            response.flags |= packet.RCODE_NAME_ERROR
        return response


    def _handleRegistration(self, request, response):
        records = self._nameRecords(request)
        return self._registerEach(request, response, iter(records))


    def _registerEach(self, request, response, records):
        """
        Register the remaining C{records} one after the other, stopping at
        the first failure.
        """
        for rr in records:
            try:
                owner, groupBit = _parseNameRData(rr.data)
            except _BadRData:
                response.flags |= packet.RCODE_FORMAT_ERROR
                return response
            nameType = NameType.UNIQUE
            if groupBit or request.flags & packet.FLAG_GROUP:
                nameType = NameType.GROUP
            name = rr.name
            try:
                self.registry.register(
                    name.name, nameType, owner, rr.ttl, name.scopeID)
            except NameConflictError:
                d = self._resolveConflict(name, nameType, owner, rr.ttl)
                if d is None:
                    response.flags |= packet.RCODE_CONFLICT
                    return response

                def resolved(registered, records=records):
                    if not registered:
                        response.flags |= packet.RCODE_CONFLICT
                        return response
                    return self._registerEach(request, response, records)
                return d.addCallback(resolved)
        return response


    def _resolveConflict(self, name, nameType, owner, ttl):
        """
        Try to register C{owner} for C{name}, which is already registered.

        A unique name re-registered by its sole owner is refreshed.  When a
        challenger is configured, the owner of a unique name claimed by
        another node is challenged, and the name handed over if the owner
        no longer claims it.

        @return: L{None} if the conflict stands, otherwise a L{Deferred}
            firing with whether C{owner} ended up registered.
        """
        record = self.registry.getRecord(name.name, name.scopeID)
        if (record is None or record.type is not NameType.UNIQUE
                or nameType is not NameType.UNIQUE):
            return None
        current = record.owners[0]
        if current == owner:
            try:
                self.registry.refresh(name.name, owner, name.scopeID)
            except RegistryError:
                return None
            return defer.succeed(True)
        if self.challenger is None:
            return None

        def challenged(stillOwned):
            if stillOwned:
                return False
            self.log.info(
                "{current} no longer owns {name}; handing it to {owner}",
                current=current, name=str(name), owner=owner)
            try:
                self.registry.release(name.name, current, name.scopeID)
            except RegistryError:
                pass
            try:
                self.registry.register(
                    name.name, nameType, owner, ttl, name.scopeID)
            except NameConflictError:
                return False
            return True

        def failed(reason):
            self.log.failure(
                "Challenge of {current} for {name} failed", reason,
                current=current, name=str(name))
            return False

        d = self.challenger.challengeOwnership(
            name.name, current, name.scopeID)
        return d.addCallbacks(challenged, failed)


    def _handleRelease(self, request, response):
        return self._applyEach(request, response, self.registry.release)


    def _handleRefresh(self, request, response):
        return self._applyEach(request, response, self.registry.refresh)


    def _handleConflict(self, request, response):
        return self._applyEach(request, response, self._markConflict)


    def _markConflict(self, name, owner, scopeID=""):
        """
        Hide C{name} from queries, following a name conflict demand for
        C{owner}, which must be one of its owners.
        """
        record = self.registry.getRecord(name, scopeID)
        if record is not None and owner not in record.owners:
            raise OwnerMismatchError(name, owner)
        self.registry.markConflict(name, scopeID)


    def _applyEach(self, request, response, operation):
        for rr in self._nameRecords(request):
            try:
                owner, groupBit = _parseNameRData(rr.data)
            except _BadRData:
                response.flags |= packet.RCODE_FORMAT_ERROR
                return response
            try:
                operation(rr.name.name, owner, rr.name.scopeID)
            except RegistryError as e:
                self.log.debug(
                    "{operation} of {name} for {owner} failed: {error!r}",
                    operation=operation.__name__, name=str(rr.name),
                    owner=owner, error=e)
                response.flags |= packet.RCODE_SERVER_ERROR
                return response
        return response
