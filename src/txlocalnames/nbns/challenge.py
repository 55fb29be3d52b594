# -*- test-case-name: txlocalnames.test.test_nbns_challenge -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Name challenges: asking the owner of a unique name whether it still uses it
before letting another node register the name.
"""

import socket

from twisted.internet import defer
from twisted.internet.protocol import DatagramProtocol
from twisted.logger import Logger
from twisted.python import failure

from txlocalnames._random import randomSource
from txlocalnames.error import LocalNamesError, TransportError
from txlocalnames.nbns import packet
from txlocalnames.nbns.handler import answerQuestions
from txlocalnames.nbns.name import NetBIOSName


CHALLENGE_TIMEOUT = 2
CHALLENGE_RETRIES = 3



def _ownsAddress(rr, address):
    """
    Whether the RDATA of C{rr}, in either the 4 or the 6 byte form, is the
    packed IPv4 C{address}.
    """
    if len(rr.data) == 6:
        return rr.data[2:] == address
    return rr.data == address



class _Challenge(DatagramProtocol):
    """
    One challenge: sends a name query to the owner, resending it on timeout
    or on an unsatisfying answer, at most C{retries} times in all.

    @ivar deferred: Fires with C{True} if the owner still claims the name,
        C{False} otherwise.

    @ivar sends: How many queries have been sent.
    """
    log = Logger()

    def __init__(self, query, ownerIP, port, timeout, retries, clock):
        self.query = query
        self.data = query.toStr()
        self.ownerIP = ownerIP
        self._packedOwner = socket.inet_aton(ownerIP)
        self.port = port
        self.timeout = timeout
        self.retries = retries
        self.clock = clock
        self.sends = 0
        self.finished = False
        self._timeoutCall = None
        self.deferred = defer.Deferred(lambda d: self._stop())


    def startProtocol(self):
        self._send()


    def _send(self):
        if self.sends >= self.retries:
            self._finish(False)
            return
        self.sends += 1
        try:
            self.transport.write(self.data, (self.ownerIP, self.port))
        except OSError as e:
            self._finish(failure.Failure(TransportError(self.ownerIP, e)))
            return
        self._timeoutCall = self.clock.callLater(self.timeout, self._timedOut)


    def _timedOut(self):
        self._timeoutCall = None
        self.log.debug(
            "Challenge {id} to {owner} timed out",
            id=self.query.transactionID, owner=self.ownerIP)
        self._send()


    def _retry(self):
        if self._timeoutCall is not None:
            self._timeoutCall.cancel()
            self._timeoutCall = None
        self._send()


    def datagramReceived(self, data, addr):
        if self.finished or addr[0] != self.ownerIP:
            return
        try:
            response = packet.decodePacket(data)
        except LocalNamesError as e:
            self.log.debug(
                "Undecodable challenge response from {addr}: {error!r}",
                addr=addr, error=e)
            self._retry()
            return
        if response.transactionID != self.query.transactionID:
            self._retry()
            return
        if response.rcode() == packet.RCODE_NAME_ERROR:
            self._finish(False)
            return
        for rr in response.answers:
            if _ownsAddress(rr, self._packedOwner):
                self._finish(True)
                return
        self._retry()


    def _stop(self):
        self.finished = True
        if self._timeoutCall is not None:
            self._timeoutCall.cancel()
            self._timeoutCall = None
        if self.transport is not None:
            self.transport.stopListening()


    def _finish(self, result):
        if self.finished:
            return
        self._stop()
        if isinstance(result, failure.Failure):
            self.deferred.errback(result)
        else:
            self.deferred.callback(result)



class NameChallenger:
    """
    Challenges owners of unique names, and defends locally registered names.

    @ivar registry: The L{NameRegistry} holding locally known names.
    @ivar port: The port challenges are sent to.
    @ivar timeout: Seconds to wait for each answer.
    @ivar retries: How many queries a challenge sends at most.
    """
    log = Logger()

    def __init__(self, registry, reactor=None, port=packet.NBNS_PORT,
                 timeout=CHALLENGE_TIMEOUT, retries=CHALLENGE_RETRIES,
                 idSource=None):
        self.registry = registry
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self.port = port
        self.timeout = timeout
        self.retries = retries
        if idSource is None:
            idSource = randomSource
        self._idSource = idSource


    def challengeOwnership(self, name, ownerIP, scopeID=""):
        """
        Ask C{ownerIP} whether it still owns C{name}.

        @type name: L{str}
        @param ownerIP: The dotted-quad IPv4 address of the registered owner.

        @return: A L{Deferred} firing with C{True} if the owner answered with
            its own address, or C{False} if it denied owning the name or did
            not confirm it after L{retries} queries.  It fails with
            L{TransportError} if a query could not be sent.
        """
        query = packet.Packet(self._idSource(), packet.OPCODE_QUERY)
        query.questions.append(packet.Question(
            NetBIOSName(name, scopeID), packet.TYPE_NB, packet.CLASS_IN))
        try:
            challenge = _Challenge(
                query, ownerIP, self.port, self.timeout, self.retries,
                self._reactor)
            self._reactor.listenUDP(0, challenge)
        except Exception:
            return defer.fail()
        self.log.debug(
            "Challenging {owner} for {name!r}", owner=ownerIP, name=name)
        return challenge.deferred


    def defendName(self, request, response):
        """
        Answer a name query with every owner of the names held in the
        registry, as an authoritative response.

        Requests other than name queries are left alone.

        @type request: L{packet.Packet}
        @type response: L{packet.Packet}

        @return: The questions of C{request} whose names are not
            registered.
        @rtype: L{list}
        """
        if request.opcode() != packet.OPCODE_QUERY:
            return []
        missing = answerQuestions(self.registry, request.questions, response)
        if len(missing) < len(request.questions):
            response.flags = (
                packet.FLAG_RESPONSE | packet.FLAG_AUTHORITATIVE
                | response.flags & packet.FLAG_GROUP)
        return missing
