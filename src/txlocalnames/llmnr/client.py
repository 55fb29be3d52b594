# -*- test-case-name: txlocalnames.test.test_llmnr_client -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
An LLMNR querier.

Every query goes out through the same UDP socket; responses are matched to
pending queries by transaction ID.
"""

from twisted.internet import defer
from twisted.internet.error import CannotListenError
from twisted.internet.protocol import DatagramProtocol
from twisted.logger import Logger
from twisted.python import failure

from txlocalnames._random import randomSource
from txlocalnames.error import (
    LocalNamesError, TransportError, ClientClosedError, LLMNRQueryTimeoutError)
from txlocalnames.llmnr import wire


class Client(DatagramProtocol):
    """
    Sends LLMNR queries to a multicast group and waits for responses.

    @ivar timeout: Seconds to wait for a response when L{query} is not given
        a timeout.

    @ivar address: Where queries are sent.

    @ivar liveMessages: Maps the ID of each pending query to its
        L{Deferred} and the delayed call which times it out.

    @ivar closed: Whether L{close} has been called.
    """
    log = Logger()

    def __init__(self, timeout=2.0, address=None, reactor=None,
                 idSource=None):
        self.timeout = timeout
        if address is None:
            address = (wire.IPV4_MULTICAST_ADDRESS, wire.LLMNR_PORT)
        self.address = address
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        if idSource is None:
            idSource = randomSource
        self._idSource = idSource
        self.liveMessages = {}
        self.closed = False
        self._port = None


    def startListening(self):
        """
        Bind an ephemeral port to send queries from.
        """
        interface = "::" if ":" in self.address[0] else ""
        self._port = self._reactor.listenUDP(
            0, self, interface=interface, maxPacketSize=wire.MAX_PACKET_SIZE)


    def callLater(self, period, func, *args):
        """
        Wrapper around reactor.callLater, mainly for test purpose.
        """
        return self._reactor.callLater(period, func, *args)


    def pickID(self):
        """
        Return an ID no pending query uses.
        """
        while True:
            id = self._idSource()
            if id not in self.liveMessages:
                return id


    def query(self, name, type=wire.TYPE_A, timeout=None):
        """
        Ask the group about C{name}.

        @type name: L{str}

        @param type: The record type wanted.

        @param timeout: Seconds to wait, instead of L{timeout}.

        @return: A L{Deferred} which fires with the first response
            L{wire.Message} carrying this query's ID.  It fails with
            L{LLMNRQueryTimeoutError} if no response arrives in time, with
            L{CancelledError} if cancelled, with L{ClientClosedError} if the
            client is closed first, with a L{ValidationError} if C{name}
            is not valid, and with L{TransportError} if the query could
            not be sent.
        """
        if self.closed:
            return defer.fail(ClientClosedError(name))
        if timeout is None:
            timeout = self.timeout

        if self.transport is None:
            try:
                self.startListening()
            except CannotListenError:
                return defer.fail()

        id = self.pickID()
        m = wire.Message(id)
        try:
            m.addQuestion(name, type, wire.CLASS_IN)
            self.transport.write(m.toStr(), self.address)
        except OSError as e:
            return defer.fail(TransportError(self.address, e))
        except Exception:
            return defer.fail()

        resultDeferred = defer.Deferred(lambda d: self._clearCancelled(id))
        cancelCall = self.callLater(
            timeout, self._clearFailed, resultDeferred, id)
        self.liveMessages[id] = (resultDeferred, cancelCall)
        return resultDeferred


    def _clearFailed(self, deferred, id):
        """
        Clean the Deferred after a timeout.
        """
        self.liveMessages.pop(id, None)
        deferred.errback(failure.Failure(LLMNRQueryTimeoutError(id)))


    def _clearCancelled(self, id):
        entry = self.liveMessages.pop(id, None)
        if entry is not None:
            entry[1].cancel()


    def datagramReceived(self, data, addr):
        """
        Read a datagram, extract the message in it and trigger the associated
        Deferred.
        """
        try:
            m = wire.decodeMessage(data)
        except LocalNamesError as e:
            self.log.debug(
                "Dropping undecodable datagram ({length} bytes) from "
                "{addr}: {error!r}", length=len(data), addr=addr, error=e)
            return

        if not m.isResponse():
            return

        entry = self.liveMessages.pop(m.id, None)
        if entry is None:
            self.log.debug(
                "Dropping response {id} from {addr}: no such query",
                id=m.id, addr=addr)
            return

        d, canceller = entry
        canceller.cancel()
        d.callback(m)


    def close(self):
        """
        Fail every pending query with L{ClientClosedError} and stop
        listening.  Calling this more than once is allowed.

        @return: A L{Deferred} which fires when the socket is closed.
        """
        if self.closed:
            return defer.succeed(None)
        self.closed = True

        pending, self.liveMessages = self.liveMessages, {}
        for id, (d, canceller) in pending.items():
            canceller.cancel()
            d.errback(ClientClosedError(id))

        port, self._port = self._port, None
        if port is None:
            return defer.succeed(None)
        return defer.maybeDeferred(port.stopListening)
