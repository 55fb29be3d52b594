# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{txlocalnames.nbns.server}.
"""

import struct

from twisted.internet import address, task
from twisted.internet.testing import FakeDatagramTransport, StringTransport
from twisted.trial import unittest

from txlocalnames.nbns import packet, server
from txlocalnames.nbns.handler import PacketHandler
from txlocalnames.nbns.name import NetBIOSName
from txlocalnames.nbns.registry import NameRegistry, NameType
from txlocalnames.test._fakes import FakeUDPReactor


PEER = address.IPv4Address("TCP", "10.0.0.5", 1234)



def query(name="HOST", id=42):
    p = packet.Packet(id, packet.OPCODE_QUERY)
    p.questions.append(packet.Question(NetBIOSName(name)))
    return p



def bigGroup(registry, count=60):
    for i in range(count):
        registry.register("GRP", NameType.GROUP, "10.0.0.%d" % (i,), 300)



def rawQuery(encoded, id=42):
    """
    A name query for the first-level encoded name C{encoded}, built by hand
    so that it may carry names L{NetBIOSName} refuses to encode.
    """
    return (
        struct.pack("!6H", id, packet.OPCODE_QUERY, 1, 0, 0, 0)
        + struct.pack("!B", len(encoded)) + encoded
        + struct.pack("!HH", packet.TYPE_NB, packet.CLASS_IN))



# The "*" wildcard used by node status requests, and the all-space name.
UNENCODABLE = [b"CK" + b"AA" * 15, b"CA" * 16]



class TruncateTests(unittest.SynchronousTestCase):
    """
    Tests for L{server.truncate}.
    """

    def test_small(self):
        response = query()
        self.assertEqual(server.truncate(response), response.toStr())
        self.assertFalse(response.flags & packet.FLAG_TRUNCATED)


    def test_large(self):
        """
        A response longer than 576 bytes is cut to 576 bytes, and its
        header carries the truncation flag.
        """
        response = packet.Packet(1, packet.FLAG_RESPONSE)
        for i in range(20):
            response.answers.append(packet.ResourceRecord(
                NetBIOSName("N%d" % (i,)), data=b"\x0a\x00\x00\x01"))
        data = server.truncate(response)
        self.assertEqual(len(data), packet.MAX_UDP_SIZE)
        flags = struct.unpack("!H", data[2:4])[0]
        self.assertTrue(flags & packet.FLAG_TRUNCATED)
        self.assertTrue(response.flags & packet.FLAG_TRUNCATED)
        self.assertEqual(data, response.toStr()[:packet.MAX_UDP_SIZE])



class DatagramProtocolTests(unittest.SynchronousTestCase):
    """
    Tests for L{server.NBNSDatagramProtocol}.
    """

    def setUp(self):
        self.registry = NameRegistry(task.Clock())
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        self.protocol = server.NBNSDatagramProtocol(
            PacketHandler(self.registry))
        self.transport = FakeDatagramTransport()
        self.protocol.makeConnection(self.transport)


    def test_answer(self):
        self.protocol.datagramReceived(query().toStr(), ("10.0.0.9", 137))
        [(data, addr)] = self.transport.written
        self.assertEqual(addr, ("10.0.0.9", 137))
        response = packet.decodePacket(data)
        self.assertEqual(response.transactionID, 42)
        self.assertEqual(response.answers[0].data, b"\x0a\x00\x00\x01")


    def test_undecodable(self):
        self.protocol.datagramReceived(b"\x00\x01\x02", ("10.0.0.9", 137))
        self.assertEqual(self.transport.written, [])


    def test_unencodableName(self):
        """
        Queries for names that cannot be encoded in a response are dropped
        without an error being logged.
        """
        for encoded in UNENCODABLE:
            self.protocol.datagramReceived(
                rawQuery(encoded), ("10.0.0.9", 137))
        self.assertEqual(self.transport.written, [])
        self.assertEqual(self.flushLoggedErrors(), [])


    def test_responseIgnored(self):
        p = query()
        p.flags |= packet.FLAG_RESPONSE
        self.protocol.datagramReceived(p.toStr(), ("10.0.0.9", 137))
        self.assertEqual(self.transport.written, [])


    def test_truncated(self):
        """
        An answer too large for a datagram is sent truncated, with the
        truncation flag set.
        """
        bigGroup(self.registry)
        self.protocol.datagramReceived(query("GRP").toStr(), ("10.0.0.9", 137))
        [(data, addr)] = self.transport.written
        self.assertLessEqual(len(data), packet.MAX_UDP_SIZE)
        flags = struct.unpack("!H", data[2:4])[0]
        self.assertTrue(flags & packet.FLAG_TRUNCATED)
        self.assertTrue(flags & packet.FLAG_GROUP)



class StreamProtocolTests(unittest.SynchronousTestCase):
    """
    Tests for L{server.NBNSStreamProtocol} and L{server.NBNSServerFactory}.
    """

    def setUp(self):
        self.clock = task.Clock()
        self.registry = NameRegistry(self.clock)
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        self.factory = server.NBNSServerFactory(
            PacketHandler(self.registry), self.clock)
        self.protocol, self.transport = self.connect(PEER)


    def connect(self, peer):
        protocol = self.factory.buildProtocol(peer)
        transport = StringTransport(peerAddress=peer)
        protocol.makeConnection(transport)
        return protocol, transport


    def send(self, data, protocol=None):
        (protocol or self.protocol).dataReceived(
            struct.pack("!H", len(data)) + data)


    def test_answer(self):
        """
        Requests and responses are framed with a 2 byte length.
        """
        self.send(query().toStr())
        data = self.transport.value()
        length = struct.unpack("!H", data[:2])[0]
        self.assertEqual(length, len(data) - 2)
        response = packet.decodePacket(data[2:])
        self.assertEqual(response.answers[0].data, b"\x0a\x00\x00\x01")
        self.assertFalse(self.transport.disconnecting)


    def test_severalMessages(self):
        self.send(query(id=1).toStr())
        self.send(query(id=2).toStr())
        data = self.transport.value()
        first = struct.unpack("!H", data[:2])[0]
        self.assertEqual(
            packet.decodePacket(data[2:2 + first]).transactionID, 1)
        self.assertEqual(
            packet.decodePacket(data[4 + first:]).transactionID, 2)


    def test_notTruncated(self):
        """
        Large answers are sent whole over TCP.
        """
        bigGroup(self.registry)
        self.send(query("GRP").toStr())
        response = packet.decodePacket(self.transport.value()[2:])
        self.assertEqual(len(response.answers), 60)
        self.assertFalse(response.flags & packet.FLAG_TRUNCATED)


    def test_undecodable(self):
        self.send(b"\x00\x01\x02")
        self.assertEqual(self.transport.value(), b"")
        self.assertTrue(self.transport.disconnecting)


    def test_unencodableName(self):
        for encoded in UNENCODABLE:
            protocol, transport = self.connect(PEER)
            self.send(rawQuery(encoded), protocol)
            self.assertEqual(transport.value(), b"")
            self.assertTrue(transport.disconnecting)
        self.assertEqual(self.flushLoggedErrors(), [])


    def test_idleTimeout(self):
        self.clock.advance(server.TCP_TIMEOUT - 1)
        self.assertFalse(self.transport.disconnecting)
        self.clock.advance(1)
        self.assertTrue(self.transport.disconnecting)


    def test_activityResetsTimeout(self):
        self.clock.advance(20)
        self.send(query().toStr())
        self.clock.advance(20)
        self.assertFalse(self.transport.disconnecting)
        self.clock.advance(10)
        self.assertTrue(self.transport.disconnecting)


    def test_tracking(self):
        """
        Live connections are tracked by peer address until they are lost.
        """
        other = address.IPv4Address("TCP", "10.0.0.6", 999)
        protocol, transport = self.connect(other)
        self.assertEqual(
            self.factory.connections, {PEER: self.protocol, other: protocol})
        protocol.connectionLost(None)
        self.assertEqual(self.factory.connections, {PEER: self.protocol})
        self.assertEqual(len(self.clock.getDelayedCalls()), 1)


    def test_closeAllConnections(self):
        other = address.IPv4Address("TCP", "10.0.0.6", 999)
        protocol, transport = self.connect(other)
        self.factory.stopFactory()
        self.assertTrue(self.transport.disconnecting)
        self.assertTrue(transport.disconnecting)



class NameServerServiceTests(unittest.SynchronousTestCase):
    """
    Tests for L{server.NameServerService}.
    """

    def setUp(self):
        self.reactor = FakeUDPReactor()
        self.registry = NameRegistry(self.reactor)
        self.service = server.NameServerService(
            self.registry, interface="10.0.0.2", port=1137, reactor=self.reactor)


    def test_children(self):
        self.assertEqual(
            sorted(s.name for s in self.service), ["sweeper", "tcp", "udp"])


    def test_listen(self):
        """
        Starting the service listens on UDP and TCP on the same port, with
        one handler shared by both.
        """
        self.service.startService()
        [udp] = self.reactor.udpPorts
        self.assertEqual(
            (udp.port, udp.interface, udp.maxPacketSize),
            (1137, "10.0.0.2", packet.MAX_UDP_SIZE))
        self.assertIs(udp.protocol, self.service.datagramProtocol)
        [tcp] = self.reactor.tcpPorts
        self.assertEqual((tcp.port, tcp.interface), (1137, "10.0.0.2"))
        self.assertIs(tcp.factory, self.service.factory)
        self.assertIs(udp.protocol.handler, tcp.factory.handler)
        self.assertIs(tcp.factory.handler.registry, self.registry)


    def test_sweep(self):
        """
        Expired names are removed periodically.
        """
        self.registry.register("OLD", NameType.UNIQUE, "10.0.0.1", 10)
        self.service.startService()
        self.assertEqual(len(self.registry), 1)
        self.reactor.advance(server.SWEEP_INTERVAL)
        self.assertEqual(len(self.registry), 0)


    def test_stop(self):
        self.service.startService()
        self.service.stopService()
        self.assertFalse(self.service.running)
        self.assertFalse(self.reactor.udpPorts[0].connected)
        self.assertFalse(self.reactor.tcpPorts[0].connected)
        self.assertEqual(self.reactor.getDelayedCalls(), [])
