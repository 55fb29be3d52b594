# -*- test-case-name: txlocalnames.test.test_tap -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Run a link-local name server: C{python -m txlocalnames --help}.
"""

import sys

from twisted.internet import defer, task
from twisted.logger import (
    FilteringLogObserver, LogLevel, LogLevelFilterPredicate, globalLogBeginner,
    textFileLogObserver)
from twisted.python import usage

from txlocalnames import tap


# Timestamps down to the microsecond, e.g. "2024-01-02 15h04m05s.000000".
TIME_FORMAT = "%Y-%m-%d %Hh%Mm%Ss.%f"



def startLogging(verbose, outFile=sys.stdout):
    """
    Send log events to C{outFile}, including debug events if C{verbose}.
    """
    level = LogLevel.debug if verbose else LogLevel.info
    observer = FilteringLogObserver(
        textFileLogObserver(outFile, timeFormat=TIME_FORMAT),
        [LogLevelFilterPredicate(defaultLogLevel=level)])
    globalLogBeginner.beginLoggingTo([observer])



def run(reactor, config):
    """
    Start the services described by C{config} and run until the reactor
    stops.
    """
    services = tap.makeService(config, reactor)
    services.startService()
    reactor.addSystemEventTrigger("before", "shutdown", services.stopService)
    return defer.Deferred()



def main(argv=None):
    config = tap.Options()
    try:
        config.parseOptions(argv)
    except usage.UsageError as e:
        print(config)
        print("%s: %s" % (sys.argv[0], e))
        sys.exit(1)
    startLogging(config["verbose"])
    task.react(run, (config,))



if __name__ == "__main__":
    main()
