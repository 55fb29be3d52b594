# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{txlocalnames.nbns.handler}.
"""

from twisted.internet import defer, task
from twisted.trial import unittest

from txlocalnames.error import NameNotFoundError, TransportError
from txlocalnames.nbns import packet
from txlocalnames.nbns.challenge import NameChallenger
from txlocalnames.nbns.handler import PacketHandler
from txlocalnames.nbns.name import NetBIOSName
from txlocalnames.nbns.redirect import RedirectManager
from txlocalnames.nbns.registry import NameRegistry, NameStatus, NameType
from txlocalnames.test._fakes import FakeUDPReactor


HOST = NetBIOSName("HOST")
ADDR1 = b"\x0a\x00\x00\x01"
ADDR2 = b"\x0a\x00\x00\x02"



class FakeChallenger:
    """
    Records challenges and lets the test decide their outcome.
    """

    def __init__(self):
        self.challenges = []


    def challengeOwnership(self, name, ownerIP, scopeID=""):
        d = defer.Deferred()
        self.challenges.append((name, ownerIP, scopeID, d))
        return d



def request(opcode, *records, **kw):
    """
    Build a request carrying C{records} as C{(name, rdata)} pairs in its
    additional section, or in its answer section with C{section="answers"}.
    """
    p = packet.Packet(kw.get("id", 42), opcode | kw.get("flags", 0))
    section = getattr(p, kw.get("section", "additional"))
    for name, data in records:
        p.questions.append(packet.Question(name))
        section.append(packet.ResourceRecord(
            name, packet.TYPE_NB, packet.CLASS_IN, kw.get("ttl", 300), data))
    return p



def query(*names):
    p = packet.Packet(42, packet.OPCODE_QUERY)
    for name in names:
        p.questions.append(packet.Question(name))
    return p



class HandlerTestMixin:

    def setUp(self):
        self.clock = task.Clock()
        self.registry = NameRegistry(self.clock)
        self.handler = PacketHandler(self.registry)


    def handle(self, request):
        return self.successResultOf(self.handler.handlePacket(request))



class QueryTests(HandlerTestMixin, unittest.SynchronousTestCase):
    """
    Tests for name queries.
    """

    def test_unique(self):
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        request = query(HOST)
        response = self.handle(request)
        self.assertEqual(response.transactionID, 42)
        self.assertEqual(
            response.flags, packet.FLAG_RESPONSE | packet.FLAG_AUTHORITATIVE)
        self.assertEqual(response.questions, request.questions)
        self.assertEqual(
            response.answers,
            [packet.ResourceRecord(
                HOST, packet.TYPE_NB, packet.CLASS_IN, 86400, ADDR1)])


    def test_group(self):
        self.registry.register("GRP", NameType.GROUP, "10.0.0.1", 300)
        self.registry.register("GRP", NameType.GROUP, "10.0.0.2", 300)
        response = self.handle(query(NetBIOSName("GRP")))
        self.assertTrue(response.flags & packet.FLAG_GROUP)
        self.assertEqual([rr.data for rr in response.answers], [ADDR1, ADDR2])


    def test_scope(self):
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300, "a.b")
        response = self.handle(query(HOST))
        self.assertEqual(response.rcode(), packet.RCODE_NAME_ERROR)
        response = self.handle(query(NetBIOSName("HOST", "a.b")))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)


    def test_notFound(self):
        response = self.handle(query(HOST))
        self.assertEqual(response.rcode(), packet.RCODE_NAME_ERROR)
        self.assertEqual(response.answers, [])


    def test_severalQuestions(self):
        """
        Names that are registered are answered even when an earlier
        question of the same query is not, and the response carries the
        name error code.
        """
        self.registry.register("OTHER", NameType.UNIQUE, "10.0.0.2", 300)
        other = NetBIOSName("OTHER")
        response = self.handle(query(NetBIOSName("MISSING"), other))
        self.assertEqual(response.rcode(), packet.RCODE_NAME_ERROR)
        self.assertEqual(
            response.answers,
            [packet.ResourceRecord(
                other, packet.TYPE_NB, packet.CLASS_IN, 86400, ADDR2)])


    def test_defendedByChallenger(self):
        """
        With a challenger, name queries are answered by its
        L{NameChallenger.defendName}.
        """
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        challenger = NameChallenger(self.registry, FakeUDPReactor())
        defended = []
        defendName = challenger.defendName

        def recordingDefendName(request, response):
            defended.append(request)
            return defendName(request, response)
        self.patch(challenger, "defendName", recordingDefendName)
        self.handler = PacketHandler(self.registry, challenger=challenger)

        request = query(HOST, NetBIOSName("MISSING"))
        response = self.handle(request)
        self.assertEqual(defended, [request])
        self.assertEqual([rr.data for rr in response.answers], [ADDR1])
        self.assertEqual(response.rcode(), packet.RCODE_NAME_ERROR)
        self.assertTrue(response.flags & packet.FLAG_AUTHORITATIVE)


    def test_conflictHidden(self):
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        self.registry.markConflict("HOST")
        response = self.handle(query(HOST))
        self.assertEqual(response.rcode(), packet.RCODE_NAME_ERROR)


    def test_redirect(self):
        """
        Queries in a redirected scope are answered with a redirect before
        the registry is consulted.
        """
        redirects = RedirectManager()
        redirects.addRedirect("corp.com", "10.9.9.9", 137)
        self.handler = PacketHandler(self.registry, redirects)
        response = self.handle(query(NetBIOSName("HOST", "corp.com")))
        self.assertEqual(
            response.flags, packet.FLAG_RESPONSE | packet.OPCODE_REDIRECT)
        self.assertEqual(len(response.additional), 1)
        self.assertEqual(
            self.handle(query(HOST)).rcode(), packet.RCODE_NAME_ERROR)


    def test_responseIgnored(self):
        response = packet.Packet(1, packet.FLAG_RESPONSE)
        self.assertIsNone(self.handle(response))


    def test_notImplemented(self):
        for opcode in [packet.OPCODE_WACK, 0x7800]:
            response = self.handle(packet.Packet(1, opcode))
            self.assertEqual(response.rcode(), packet.RCODE_NOT_IMPLEMENTED)
            self.assertTrue(response.isResponse())



class RegistrationTests(HandlerTestMixin, unittest.SynchronousTestCase):
    """
    Tests for name registration requests.
    """

    def test_unique(self):
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, b"\x00\x00" + ADDR1), ttl=600))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)
        self.assertEqual(
            self.registry.query("HOST"), (["10.0.0.1"], NameType.UNIQUE))
        self.assertEqual(self.registry.getRecord("HOST").deadline, 600)


    def test_answerSection(self):
        """
        Records are also read from the answer section, with 4 byte RDATA.
        """
        self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, ADDR1), section="answers"))
        self.assertEqual(self.registry.query("HOST")[0], ["10.0.0.1"])


    def test_groupFromHeader(self):
        grp = NetBIOSName("GRP")
        for data in [ADDR1, ADDR2]:
            self.handle(request(
                packet.OPCODE_REGISTRATION, (grp, data),
                flags=packet.FLAG_GROUP))
        self.assertEqual(
            self.registry.query("GRP"),
            (["10.0.0.1", "10.0.0.2"], NameType.GROUP))


    def test_groupFromNBFlags(self):
        grp = NetBIOSName("GRP")
        for data in [ADDR1, ADDR2]:
            self.handle(request(
                packet.OPCODE_REGISTRATION, (grp, b"\x80\x00" + data)))
        self.assertEqual(
            self.registry.query("GRP"),
            (["10.0.0.1", "10.0.0.2"], NameType.GROUP))


    def test_conflict(self):
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, ADDR2)))
        self.assertEqual(response.rcode(), packet.RCODE_CONFLICT)
        self.assertEqual(self.registry.query("HOST")[0], ["10.0.0.1"])


    def test_sameOwnerRefreshes(self):
        """
        A unique name registered again by its owner is refreshed.
        """
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        self.clock.advance(100)
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)
        self.assertEqual(self.registry.getRecord("HOST").deadline, 400)


    def test_badRData(self):
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, b"\x0a\x00")))
        self.assertEqual(response.rcode(), packet.RCODE_FORMAT_ERROR)
        self.assertRaises(NameNotFoundError, self.registry.query, "HOST")


    def test_stopsAtFirstFailure(self):
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, ADDR2),
            (NetBIOSName("OTHER"), ADDR2)))
        self.assertEqual(response.rcode(), packet.RCODE_CONFLICT)
        self.assertIsNone(self.registry.getRecord("OTHER"))



class ChallengedRegistrationTests(HandlerTestMixin,
                                  unittest.SynchronousTestCase):
    """
    Tests for registrations of names owned by another node, when a
    challenger is configured.
    """

    def setUp(self):
        HandlerTestMixin.setUp(self)
        self.challenger = FakeChallenger()
        self.handler = PacketHandler(self.registry, challenger=self.challenger)
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)


    def register(self, *records):
        d = self.handler.handlePacket(
            request(packet.OPCODE_REGISTRATION, *records))
        self.assertNoResult(d)
        [(name, ownerIP, scopeID, challenge)] = self.challenger.challenges
        self.assertEqual((name, ownerIP, scopeID), ("HOST", "10.0.0.1", ""))
        return d, challenge


    def test_ownerGone(self):
        """
        The name is handed over when its owner no longer claims it.
        """
        d, challenge = self.register((HOST, ADDR2))
        challenge.callback(False)
        self.assertEqual(self.successResultOf(d).rcode(), packet.RCODE_SUCCESS)
        self.assertEqual(self.registry.query("HOST")[0], ["10.0.0.2"])


    def test_ownerPresent(self):
        d, challenge = self.register((HOST, ADDR2))
        challenge.callback(True)
        self.assertEqual(
            self.successResultOf(d).rcode(), packet.RCODE_CONFLICT)
        self.assertEqual(self.registry.query("HOST")[0], ["10.0.0.1"])


    def test_challengeFailed(self):
        d, challenge = self.register((HOST, ADDR2))
        challenge.errback(TransportError("10.0.0.1"))
        self.assertEqual(
            self.successResultOf(d).rcode(), packet.RCODE_CONFLICT)
        self.assertEqual(len(self.flushLoggedErrors(TransportError)), 1)


    def test_continuesAfterChallenge(self):
        """
        Records after a challenged one are registered once the challenge
        is over.
        """
        other = NetBIOSName("OTHER")
        d, challenge = self.register((HOST, ADDR2), (other, ADDR2))
        self.assertIsNone(self.registry.getRecord("OTHER"))
        challenge.callback(False)
        self.assertEqual(self.successResultOf(d).rcode(), packet.RCODE_SUCCESS)
        self.assertEqual(self.registry.query("OTHER")[0], ["10.0.0.2"])


    def test_groupNotChallenged(self):
        response = self.handle(request(
            packet.OPCODE_REGISTRATION, (HOST, ADDR2),
            flags=packet.FLAG_GROUP))
        self.assertEqual(response.rcode(), packet.RCODE_CONFLICT)
        self.assertEqual(self.challenger.challenges, [])



class ReleaseAndRefreshTests(HandlerTestMixin, unittest.SynchronousTestCase):
    """
    Tests for name release and refresh requests.
    """

    def setUp(self):
        HandlerTestMixin.setUp(self)
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)


    def test_release(self):
        response = self.handle(request(packet.OPCODE_RELEASE, (HOST, ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)
        self.assertIsNone(self.registry.getRecord("HOST"))


    def test_releaseWrongOwner(self):
        response = self.handle(request(packet.OPCODE_RELEASE, (HOST, ADDR2)))
        self.assertEqual(response.rcode(), packet.RCODE_SERVER_ERROR)
        self.assertEqual(self.registry.query("HOST")[0], ["10.0.0.1"])


    def test_releaseUnknown(self):
        response = self.handle(request(
            packet.OPCODE_RELEASE, (NetBIOSName("NOPE"), ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SERVER_ERROR)


    def test_refresh(self):
        self.clock.advance(200)
        response = self.handle(request(packet.OPCODE_REFRESH, (HOST, ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)
        self.assertEqual(self.registry.getRecord("HOST").deadline, 500)


    def test_refreshWrongOwner(self):
        response = self.handle(request(packet.OPCODE_REFRESH, (HOST, ADDR2)))
        self.assertEqual(response.rcode(), packet.RCODE_SERVER_ERROR)


    def test_badRData(self):
        response = self.handle(request(packet.OPCODE_RELEASE, (HOST, b"")))
        self.assertEqual(response.rcode(), packet.RCODE_FORMAT_ERROR)
        self.assertIsNotNone(self.registry.getRecord("HOST"))



class ConflictDemandTests(HandlerTestMixin, unittest.SynchronousTestCase):
    """
    Tests for name conflict demands.
    """

    def setUp(self):
        HandlerTestMixin.setUp(self)
        self.registry.register("HOST", NameType.UNIQUE, "10.0.0.1", 300)


    def test_markConflict(self):
        """
        A name named in a conflict demand is hidden from queries.
        """
        response = self.handle(request(packet.OPCODE_CONFLICT, (HOST, ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SUCCESS)
        self.assertIs(
            self.registry.getRecord("HOST").status, NameStatus.CONFLICT)
        self.assertEqual(
            self.handle(query(HOST)).rcode(), packet.RCODE_NAME_ERROR)


    def test_wrongOwner(self):
        response = self.handle(request(packet.OPCODE_CONFLICT, (HOST, ADDR2)))
        self.assertEqual(response.rcode(), packet.RCODE_SERVER_ERROR)
        self.assertIs(
            self.registry.getRecord("HOST").status, NameStatus.ACTIVE)


    def test_unknown(self):
        response = self.handle(request(
            packet.OPCODE_CONFLICT, (NetBIOSName("NOPE"), ADDR1)))
        self.assertEqual(response.rcode(), packet.RCODE_SERVER_ERROR)
