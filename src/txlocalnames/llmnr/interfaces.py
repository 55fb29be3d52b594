# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Interfaces for the LLMNR server handler chain.
"""

from zope.interface import Interface


class IResponseWriter(Interface):
    """
    Sends responses for one received query back to its sender.
    """

    def writeMessage(message):
        """
        Mark C{message} as a response, encode it and send it to the address
        the query came from.

        @type message: L{txlocalnames.llmnr.wire.Message}

        @raise ValueError: If C{message} is L{None}.
        @raise txlocalnames.error.ServerClosedError: If the server has been
            closed.
        @raise txlocalnames.error.TransportError: If the datagram could not
            be sent.
        @raise txlocalnames.error.ValidationError: If the message cannot be
            encoded.
        """


    def getRemoteAddr():
        """
        @return: The C{(host, port)} the query came from.
        """



class IHandler(Interface):
    """
    One step of an LLMNR server's handler chain.
    """

    def run(server, remoteAddr, writer, message):
        """
        Process a received query.

        Handlers are called in registration order.  A handler may change
        C{message}: each query is decoded into its own message object.

        @param server: The server that received the query.
        @type server: L{txlocalnames.llmnr.server.Server}

        @param remoteAddr: The C{(host, port)} the query came from.

        @param writer: Where responses to this query go.
        @type writer: L{IResponseWriter}

        @param message: The query.
        @type message: L{txlocalnames.llmnr.wire.Message}

        @return: C{True} to pass the query on to the next handler, C{False}
            to stop.
        @rtype: L{bool}
        """
