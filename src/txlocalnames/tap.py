# -*- test-case-name: txlocalnames.test.test_tap -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Configuration and service construction for a link-local name server.
"""

import socket

from twisted.application import service
from twisted.python import usage

from txlocalnames.error import ValidationError
from txlocalnames.llmnr import handlers, server as llmnrserver, wire
from txlocalnames.nbns import challenge, packet, redirect, registry
from txlocalnames.nbns import server as nbnsserver
from txlocalnames.nbns.name import NetBIOSName


FAMILIES = {
    "ipv4": ("udp4",),
    "ipv6": ("udp6",),
    "both": ("udp4", "udp6"),
}

# TTL of names registered from the command line: as long as RDATA allows.
STATIC_TTL = 0xFFFFFFFF



def _isIPv4(address):
    try:
        socket.inet_pton(socket.AF_INET, address)
    except (OSError, ValueError):
        return False
    return True



def _port(value):
    port = int(value)
    if not 0 <= port <= 0xFFFF:
        raise ValueError("Invalid port: %r" % (value,))
    return port

_port.coerceDoc = "Must be between 0 and 65535."



class Options(usage.Options):
    optParameters = [
        ["interface", "i", "", "The IPv4 interface to bind and join on"],
        ["nbns-port", None, packet.NBNS_PORT,
         "The NetBIOS name service port", _port],
        ["llmnr-port", None, wire.LLMNR_PORT, "The LLMNR port", _port],
        ["family", "f", "ipv4",
         "LLMNR address families: ipv4, ipv6 or both"],
        ["sweep-interval", None, nbnsserver.SWEEP_INTERVAL,
         "Seconds between removals of expired NetBIOS names", float],
    ]

    optFlags = [
        ["no-llmnr", None, "Do not run the LLMNR responder"],
        ["no-nbns", None, "Do not run the NetBIOS name server"],
        ["describe", "d", "Log every LLMNR query received"],
        ["json", None, "Log every LLMNR query received, as JSON"],
        ["challenge", "c",
         "Challenge the owner of a unique NetBIOS name before letting "
         "another node register it"],
        ["verbose", "v", "Log dropped packets"],
    ]

    def __init__(self):
        usage.Options.__init__(self)
        self.answers = {}
        self.registrations = []
        self.redirects = []


    def opt_answer(self, nameAddress):
        """
        Answer LLMNR queries for NAME with ADDRESS (NAME=ADDRESS); may be
        repeated
        """
        name, sep, address = nameAddress.partition("=")
        if not sep or wire.ipToRData(address) is None:
            raise usage.UsageError(
                "Argument must be of the form NAME=ADDRESS")
        try:
            wire.validateDomainName(name)
        except ValidationError as e:
            raise usage.UsageError("Invalid name %r: %r" % (name, e))
        self.answers.setdefault(name, []).append(address)

    opt_a = opt_answer


    def opt_register(self, nameAddress):
        """
        Register the unique NetBIOS name NAME for the IPv4 ADDRESS
        (NAME=ADDRESS); may be repeated
        """
        name, sep, address = nameAddress.partition("=")
        if not sep or not _isIPv4(address):
            raise usage.UsageError(
                "Argument must be of the form NAME=IPV4ADDRESS")
        try:
            NetBIOSName(name).validate()
        except ValidationError as e:
            raise usage.UsageError("Invalid NetBIOS name %r: %r" % (name, e))
        self.registrations.append((name, address))


    def opt_redirect(self, scopeTarget):
        """
        Redirect NetBIOS queries in SCOPE to the name server at IP:PORT
        (SCOPE=IP:PORT); may be repeated
        """
        scope, sep, target = scopeTarget.partition("=")
        ip, colon, port = target.rpartition(":")
        try:
            port = _port(port)
        except ValueError:
            colon = ""
        if not sep or not colon or not _isIPv4(ip):
            raise usage.UsageError("Argument must be of the form SCOPE=IP:PORT")
        self.redirects.append((scope, ip, port))


    def postOptions(self):
        if self["family"] not in FAMILIES:
            raise usage.UsageError(
                "--family must be one of %s" % (", ".join(sorted(FAMILIES)),))
        if self["no-llmnr"] and self["no-nbns"]:
            raise usage.UsageError("Nothing to run")
        if not self["no-llmnr"] and not (
                self.answers or self["describe"] or self["json"]):
            raise usage.UsageError(
                "The LLMNR responder needs --answer, --describe or --json "
                "(or use --no-llmnr)")



def makeLLMNRServers(config, reactor=None):
    """
    Build one LLMNR server per configured address family.

    @rtype: L{list} of L{llmnrserver.Server}
    """
    chain = []
    if config["describe"]:
        chain.append(handlers.describePacket)
    if config["json"]:
        chain.append(handlers.describePacketJSON)
    if config.answers:
        chain.append(handlers.StaticAnswerHandler(config.answers))

    servers = []
    for network in FAMILIES[config["family"]]:
        s = llmnrserver.Server(
            network, chain, port=config["llmnr-port"],
            interface=config["interface"], reactor=reactor)
        s.setDebug(config["verbose"])
        servers.append(s)
    return servers



def makeNameServer(config, reactor=None):
    """
    Build the NetBIOS name server.

    @rtype: L{nbnsserver.NameServerService}
    """
    names = registry.NameRegistry(reactor)
    for name, address in config.registrations:
        names.register(name, registry.NameType.UNIQUE, address, STATIC_TTL)

    redirects = None
    if config.redirects:
        redirects = redirect.RedirectManager()
        for scope, ip, port in config.redirects:
            redirects.addRedirect(scope, ip, port)

    challenger = None
    if config["challenge"]:
        challenger = challenge.NameChallenger(
            names, reactor, port=config["nbns-port"])

    return nbnsserver.NameServerService(
        names, interface=config["interface"], port=config["nbns-port"],
        sweepInterval=config["sweep-interval"], redirects=redirects,
        challenger=challenger, reactor=reactor)



def makeService(config, reactor=None):
    """
    Build every service C{config} asks for.

    @type config: L{Options}
    @rtype: L{service.MultiService}
    """
    ret = service.MultiService()
    if not config["no-llmnr"]:
        for s in makeLLMNRServers(config, reactor):
            llmnrserver.LLMNRService(s).setServiceParent(ret)
    if not config["no-nbns"]:
        makeNameServer(config, reactor).setServiceParent(ret)
    return ret
