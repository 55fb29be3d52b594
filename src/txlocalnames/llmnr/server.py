# -*- test-case-name: txlocalnames.test.test_llmnr_server -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
An LLMNR responder.

A L{Server} listens on one of the LLMNR multicast groups and passes every
query it receives through an ordered chain of L{IHandler} providers.  Each
handler gets an L{IResponseWriter} which sends responses back to the
querier.
"""

import socket
import struct

from zope.interface import implementer

from automat import MethodicalMachine

from twisted.application import service
from twisted.internet import defer
from twisted.internet.abstract import isIPv6Address
from twisted.internet.protocol import DatagramProtocol
from twisted.logger import Logger

from txlocalnames.error import (
    LocalNamesError, NoHandlersError, UnknownNetworkError, ServerClosedError,
    TransportError)
from txlocalnames.llmnr import wire
from txlocalnames.llmnr.interfaces import IHandler, IResponseWriter


NETWORKS = ("udp", "udp4", "udp6")



def _last(outputs):
    return outputs[-1]



def _second(outputs):
    return outputs[1]



@implementer(IHandler)
class HandlerFunc:
    """
    Adapt a plain function to L{IHandler}.

    @ivar function: Called with the arguments of L{IHandler.run}.
    """

    def __init__(self, function):
        self.function = function


    def run(self, server, remoteAddr, writer, message):
        return self.function(server, remoteAddr, writer, message)


    def __repr__(self):
        return "<HandlerFunc %s>" % (
            getattr(self.function, "__qualname__", self.function),)



@implementer(IResponseWriter)
class ResponseWriter:
    """
    Sends responses to the sender of one query, through the server's socket.
    """

    def __init__(self, server, transport, remoteAddr):
        self._server = server
        self._transport = transport
        self._remoteAddr = remoteAddr


    def getRemoteAddr(self):
        return self._remoteAddr


    def writeMessage(self, message):
        if message is None:
            raise ValueError("Cannot write a None message")
        if self._server.closed:
            raise ServerClosedError(self._remoteAddr)
        message.setResponse()
        data = message.toStr()
        try:
            self._transport.write(data, self._remoteAddr)
        except OSError as e:
            raise TransportError(self._remoteAddr, e) from e



class LLMNRServerProtocol(DatagramProtocol):
    """
    Decodes LLMNR queries and schedules their handling.

    @ivar server: The L{Server} owning this protocol.
    """

    def __init__(self, server):
        self.server = server


    def datagramReceived(self, data, addr):
        server = self.server
        try:
            message = wire.decodeMessage(data)
        except LocalNamesError as e:
            server._debugLog(
                "Dropping undecodable datagram ({length} bytes) from "
                "{addr}: {error!r}", length=len(data), addr=addr, error=e)
            return
        except Exception:
            server.log.failure("Unexpected decoding error")
            return

        if not message.isQuery():
            server._debugLog(
                "Dropping response {id} from {addr}", id=message.id,
                addr=addr)
            return

        writer = ResponseWriter(server, self.transport, addr)
        server._reactor.callLater(
            0, server.processHandlers, addr, writer, message)



class Server:
    """
    An LLMNR server for one address family.

    @ivar network: C{"udp4"}, C{"udp6"} or C{"udp"}; with C{"udp"} the
        address family follows L{address}.

    @ivar address: The group (or, for testing, unicast address) to listen
        on.  Multicast groups are joined, and the socket is bound to the
        wildcard address; any other address is bound directly.

    @ivar port: The UDP port, 5355 by default.

    @ivar interface: The local IPv4 address whose interface joins the group.

    @ivar handlers: The handler chain, in calling order.
    @type handlers: L{list} of L{IHandler}

    @ivar debug: Whether to log dropped datagrams.

    @ivar closed: Whether L{close} has been called.
    """
    log = Logger()
    _machine = MethodicalMachine()

    def __init__(self, network="udp4", handlers=(), address=None,
                 port=wire.LLMNR_PORT, interface="", reactor=None):
        self.network = network
        if address is None:
            if network == "udp6":
                address = wire.IPV6_MULTICAST_ADDRESS
            else:
                address = wire.IPV4_MULTICAST_ADDRESS
        self.address = address
        self.port = port
        self.interface = interface
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self.handlers = []
        self.debug = False
        self.closed = False
        self._port = None
        self._closeWaiters = []
        for handler in handlers:
            self.registerHandler(handler)


    def registerHandler(self, handler):
        """
        Append C{handler} to the handler chain.

        @param handler: An L{IHandler} provider, or a function with the
            signature of L{IHandler.run}.

        @raise TypeError: If C{handler} is neither.
        """
        if not IHandler.providedBy(handler):
            if not callable(handler):
                raise TypeError("%r is not a handler" % (handler,))
            handler = HandlerFunc(handler)
        self.handlers.append(handler)


    def setDebug(self, debug):
        self.debug = debug


    def _debugLog(self, format, **kw):
        if self.debug:
            self.log.debug(format, **kw)


    def isIPv6(self):
        if self.network == "udp6":
            return True
        if self.network == "udp4":
            return False
        return isIPv6Address(self.address)


    def isIPv4(self):
        return self.network in NETWORKS and not self.isIPv6()


    def isMulticast(self):
        """
        @return: Whether L{address} is a multicast group.
        """
        if self.isIPv6():
            return self.address.lower().startswith("ff")
        first = self.address.split(".", 1)[0]
        return first.isdigit() and 224 <= int(first) <= 239


    def getHost(self):
        """
        @return: The address the server's socket is bound to.
        """
        return self._port.getHost()


    def processHandlers(self, remoteAddr, writer, message):
        """
        Run C{message} through the handler chain, until a handler returns
        a false value or raises.
        """
        for handler in list(self.handlers):
            try:
                proceed = handler.run(self, remoteAddr, writer, message)
            except Exception:
                self.log.failure(
                    "Handler {handler!r} failed on query {id} from {addr}",
                    handler=handler, id=message.id, addr=remoteAddr)
                return
            if not proceed:
                return


    def listenAndServe(self):
        """
        Start listening and answering queries.

        @return: A L{Deferred} which fires with L{None} once the server has
            been closed.  It fails with L{NoHandlersError} if no handler is
            registered, with L{UnknownNetworkError} if L{network} is not
            recognized, and with the reactor's error if the socket cannot
            be bound.
        """
        if not self.handlers:
            return defer.fail(NoHandlersError())
        if self.network not in NETWORKS:
            return defer.fail(UnknownNetworkError(self.network))
        return self._listen()


    def close(self):
        """
        Stop listening.  Calling this more than once, or before
        L{listenAndServe}, is allowed.

        @return: A L{Deferred} which fires with L{None} once the socket is
            closed.
        """
        return self._close()


    def _listenUDP(self):
        protocol = LLMNRServerProtocol(self)
        if not self.isMulticast():
            return self._reactor.listenUDP(
                self.port, protocol, interface=self.address,
                maxPacketSize=wire.MAX_PACKET_SIZE)

        if self.isIPv6():
            port = self._reactor.listenMulticast(
                self.port, protocol, interface="::",
                maxPacketSize=wire.MAX_PACKET_SIZE, listenMultiple=True)
            mreq = (socket.inet_pton(socket.AF_INET6, self.address) +
                    struct.pack("@I", 0))
            port.getHandle().setsockopt(
                socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
        else:
            port = self._reactor.listenMulticast(
                self.port, protocol, maxPacketSize=wire.MAX_PACKET_SIZE,
                listenMultiple=True)
            d = port.joinGroup(self.address, self.interface)
            d.addErrback(
                lambda f: self.log.failure(
                    "Could not join {group}", f, group=self.address))
        return port


    @_machine.state(initial=True)
    def _new(self):
        """
        Not listening yet.
        """

    @_machine.state()
    def _listening(self):
        """
        Receiving queries.
        """

    @_machine.state()
    def _closing(self):
        """
        Waiting for the socket to close.
        """

    @_machine.state()
    def _closed(self):
        """
        Done; the server cannot be restarted.
        """

    @_machine.input()
    def _listen(self):
        "Start listening."

    @_machine.input()
    def _bindFailed(self):
        "The socket could not be bound."

    @_machine.input()
    def _close(self):
        "Stop listening."

    @_machine.input()
    def _portStopped(self):
        "The socket is closed."

    @_machine.output()
    def _bind(self):
        try:
            self._port = self._listenUDP()
        except Exception:
            failed = defer.fail()
            self._bindFailed()
            return failed
        self.log.info(
            "LLMNR server listening on {address} port {port}",
            address=self.address, port=self.port)
        return self._whenClosed()

    @_machine.output()
    def _markClosed(self):
        self.closed = True

    @_machine.output()
    def _whenClosed(self):
        d = defer.Deferred()
        self._closeWaiters.append(d)
        return d

    @_machine.output()
    def _alreadyClosed(self):
        return defer.succeed(None)

    @_machine.output()
    def _cannotListen(self):
        return defer.fail(ServerClosedError(self.address))

    @_machine.output()
    def _unbind(self):
        d = defer.maybeDeferred(self._port.stopListening)
        d.addErrback(lambda f: self.log.failure("Error closing socket", f))
        d.addCallback(lambda ignored: self._portStopped())

    @_machine.output()
    def _notifyClosed(self):
        self.log.info("LLMNR server on {address} closed", address=self.address)
        waiters, self._closeWaiters = self._closeWaiters, []
        for d in waiters:
            d.callback(None)

    _new.upon(_listen, enter=_listening, outputs=[_bind], collector=_last)
    _new.upon(_close, enter=_closed, outputs=[_markClosed, _alreadyClosed],
              collector=_last)
    _listening.upon(_listen, enter=_listening, outputs=[_whenClosed],
                    collector=_last)
    _listening.upon(_bindFailed, enter=_closed, outputs=[_markClosed])
    _listening.upon(_close, enter=_closing,
                    outputs=[_markClosed, _whenClosed, _unbind],
                    collector=_second)
    _closing.upon(_listen, enter=_closing, outputs=[_whenClosed],
                  collector=_last)
    _closing.upon(_close, enter=_closing, outputs=[_whenClosed],
                  collector=_last)
    _closing.upon(_portStopped, enter=_closed, outputs=[_notifyClosed])
    _closed.upon(_listen, enter=_closed, outputs=[_cannotListen],
                 collector=_last)
    _closed.upon(_close, enter=_closed, outputs=[_alreadyClosed],
                 collector=_last)



def createIPv4Server(handlers=(), reactor=None):
    """
    Create a server for the IPv4 LLMNR group C{224.0.0.252:5355}.
    """
    return Server("udp4", handlers, reactor=reactor)



def createIPv6Server(handlers=(), reactor=None):
    """
    Create a server for the IPv6 LLMNR group C{[FF02::1:3]:5355}.
    """
    return Server("udp6", handlers, reactor=reactor)



class LLMNRService(service.Service):
    """
    Runs a L{Server} for the lifetime of the service.

    @ivar server: The wrapped server.
    """

    def __init__(self, server):
        self.server = server


    def startService(self):
        service.Service.startService(self)
        d = self.server.listenAndServe()
        d.addErrback(
            lambda f: self.server.log.failure("LLMNR server failed", f))


    def stopService(self):
        service.Service.stopService(self)
        return self.server.close()
