# -*- test-case-name: txlocalnames.test.test_nbns_redirect -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Redirection of name queries for configured scopes to another name server.
"""

import socket
import struct
import threading

import attr

from twisted.logger import Logger

from txlocalnames.error import InvalidAddress
from txlocalnames.nbns import packet


# TTL of redirect records.
REDIRECT_TTL = 600



@attr.s(frozen=True)
class RedirectInfo:
    """
    The name server queries for a scope are sent to.

    @ivar serverIP: A dotted-quad IPv4 address.
    @ivar serverPort: A UDP port number.
    """
    serverIP = attr.ib()
    serverPort = attr.ib()

    def toRData(self):
        """
        @return: The packed address followed by the big-endian port.
        @rtype: L{bytes}
        """
        return socket.inet_aton(self.serverIP) + struct.pack(
            "!H", self.serverPort)



class RedirectManager:
    """
    Maps scope identifiers to L{RedirectInfo}.
    """
    log = Logger()

    def __init__(self):
        self._redirects = {}
        self._lock = threading.Lock()


    def addRedirect(self, scope, serverIP, port):
        """
        Redirect queries for names in C{scope} to C{serverIP:port},
        replacing any previous redirect for C{scope}.

        @raise InvalidAddress: If C{serverIP} is not a dotted-quad IPv4
            address.
        @raise ValueError: If C{port} is not a port number.
        """
        try:
            socket.inet_pton(socket.AF_INET, serverIP)
        except (OSError, ValueError):
            raise InvalidAddress(serverIP)
        if not 0 <= port <= 0xFFFF:
            raise ValueError("Invalid port %r" % (port,))
        with self._lock:
            self._redirects[scope] = RedirectInfo(serverIP, port)


    def removeRedirect(self, scope):
        with self._lock:
            self._redirects.pop(scope, None)


    def getRedirect(self, scope):
        """
        @return: The redirect for C{scope}, or L{None}.
        @rtype: L{RedirectInfo} or L{None}
        """
        with self._lock:
            return self._redirects.get(scope)


    def handleRedirect(self, request, response):
        """
        Turn C{response} into a redirect if C{request} is a name query whose
        first question is in a redirected scope.

        @type request: L{packet.Packet}
        @type response: L{packet.Packet}

        @return: C{True} if C{response} was rewritten and is complete,
            C{False} if it was left alone.
        """
        if request.opcode() != packet.OPCODE_QUERY or not request.questions:
            return False
        name = request.questions[0].name
        info = self.getRedirect(name.scopeID)
        if info is None:
            return False
        response.flags = packet.FLAG_RESPONSE | packet.OPCODE_REDIRECT
        response.additional = [packet.ResourceRecord(
            name, packet.TYPE_NB, packet.CLASS_IN, REDIRECT_TTL,
            info.toRData())]
        self.log.debug(
            "Redirecting query for {name} to {ip}:{port}", name=str(name),
            ip=info.serverIP, port=info.serverPort)
        return True
