# -*- test-case-name: txlocalnames.test.test_nbns_server -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
NetBIOS name servers over UDP and TCP.

Both transports hand decoded requests to one shared L{PacketHandler}, and so
to one shared L{NameRegistry}.
"""

from twisted.application import internet, service
from twisted.internet import protocol
from twisted.logger import Logger
from twisted.protocols.basic import Int16StringReceiver
from twisted.protocols.policies import TimeoutMixin

from txlocalnames.error import LocalNamesError
from txlocalnames.nbns import packet
from txlocalnames.nbns.handler import PacketHandler


# Seconds a TCP connection may stay idle between messages.
TCP_TIMEOUT = 30

# Seconds between sweeps of expired names.
SWEEP_INTERVAL = 60



def truncate(response, limit=packet.MAX_UDP_SIZE):
    """
    Encode C{response} for a datagram.

    If the encoding is longer than C{limit}, the truncation flag is set on
    C{response}, it is encoded again and the result is cut to C{limit}
    bytes.

    @type response: L{packet.Packet}
    @rtype: L{bytes}
    """
    data = response.toStr()
    if len(data) > limit:
        response.flags |= packet.FLAG_TRUNCATED
        data = response.toStr()[:limit]
    return data



class NBNSDatagramProtocol(protocol.DatagramProtocol):
    """
    Answers name service requests arriving over UDP.

    @ivar handler: The L{PacketHandler} building responses.
    """
    log = Logger()

    def __init__(self, handler):
        self.handler = handler


    def datagramReceived(self, data, addr):
        try:
            request = packet.decodePacket(data)
        except LocalNamesError as e:
            self.log.debug(
                "Dropping undecodable datagram ({length} bytes) from "
                "{addr}: {error!r}", length=len(data), addr=addr, error=e)
            return
        d = self.handler.handlePacket(request, addr)
        d.addCallback(self._sendResponse, addr)
        d.addErrback(
            lambda f: self.log.failure(
                "Failed to answer {request!r} from {addr}", f,
                request=request, addr=addr))


    def _sendResponse(self, response, addr):
        if response is None or self.transport is None:
            return
        self.transport.write(truncate(response), addr)



class NBNSStreamProtocol(Int16StringReceiver, TimeoutMixin):
    """
    Answers name service requests arriving over TCP, each framed by a 2 byte
    big-endian length.

    Undecodable requests and idle connections are closed.
    """
    log = Logger()
    MAX_LENGTH = packet.MAX_TCP_MESSAGE_SIZE
    timeOut = TCP_TIMEOUT

    def callLater(self, period, func):
        return self.factory._reactor.callLater(period, func)


    def connectionMade(self):
        self.setTimeout(self.timeOut)
        self.factory.connectionMade(self)


    def connectionLost(self, reason):
        self.setTimeout(None)
        self.factory.connectionLost(self)


    def stringReceived(self, data):
        self.resetTimeout()
        peer = self.transport.getPeer()
        try:
            request = packet.decodePacket(data)
        except LocalNamesError as e:
            self.log.debug(
                "Closing connection from {peer}: undecodable message "
                "({error!r})", peer=peer, error=e)
            self.transport.loseConnection()
            return
        d = self.factory.handler.handlePacket(request, peer)
        d.addCallback(self._sendResponse)
        d.addErrback(self._failed, request)


    def _sendResponse(self, response):
        if response is None:
            return
        self.sendString(response.toStr())
        self.resetTimeout()


    def _failed(self, reason, request):
        self.log.failure(
            "Failed to answer {request!r} from {peer}", reason,
            request=request, peer=self.transport.getPeer())
        self.transport.loseConnection()


    def timeoutConnection(self):
        self.log.debug(
            "Closing idle connection from {peer}",
            peer=self.transport.getPeer())
        TimeoutMixin.timeoutConnection(self)



class NBNSServerFactory(protocol.ServerFactory):
    """
    Builds L{NBNSStreamProtocol}s and tracks them, so that they can all be
    closed on shutdown.

    @ivar handler: The L{PacketHandler} shared by all connections.

    @ivar connections: Maps the peer address of each live connection to its
        protocol.
    @type connections: L{dict}
    """
    protocol = NBNSStreamProtocol

    def __init__(self, handler, reactor=None):
        self.handler = handler
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self.connections = {}


    def connectionMade(self, protocol):
        self.connections[protocol.transport.getPeer()] = protocol


    def connectionLost(self, protocol):
        peer = protocol.transport.getPeer()
        if self.connections.get(peer) is protocol:
            del self.connections[peer]


    def closeAllConnections(self):
        """
        Close every tracked connection.
        """
        for protocol in list(self.connections.values()):
            protocol.transport.loseConnection()


    def stopFactory(self):
        self.closeAllConnections()



class NameServerService(service.MultiService):
    """
    A NetBIOS name server on UDP and TCP, with periodic removal of expired
    names.

    @ivar registry: The L{NameRegistry} served.
    @ivar handler: The L{PacketHandler} shared by both transports.
    """

    def __init__(self, registry, interface="", port=packet.NBNS_PORT,
                 sweepInterval=SWEEP_INTERVAL, redirects=None,
                 challenger=None, reactor=None):
        service.MultiService.__init__(self)
        self.registry = registry
        self.handler = PacketHandler(registry, redirects, challenger)
        self.datagramProtocol = NBNSDatagramProtocol(self.handler)
        self.factory = NBNSServerFactory(self.handler, reactor)

        udp = internet.UDPServer(
            port, self.datagramProtocol, interface=interface,
            maxPacketSize=packet.MAX_UDP_SIZE, reactor=reactor)
        udp.setName("udp")
        udp.setServiceParent(self)

        tcp = internet.TCPServer(
            port, self.factory, interface=interface, reactor=reactor)
        tcp.setName("tcp")
        tcp.setServiceParent(self)

        sweeper = internet.TimerService(sweepInterval, registry.cleanExpired)
        if reactor is not None:
            sweeper.clock = reactor
        sweeper.setName("sweeper")
        sweeper.setServiceParent(self)
