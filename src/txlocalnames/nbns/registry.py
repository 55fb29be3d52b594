# -*- test-case-name: txlocalnames.test.test_nbns_registry -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The in-memory NetBIOS name registry shared by the UDP and TCP name servers.
"""

import threading
from functools import wraps

import attr
from constantly import NamedConstant, Names

from twisted.logger import Logger

from txlocalnames.error import (
    NameConflictError, NameNotFoundError, OwnerMismatchError)


class NameType(Names):
    """
    Whether a name may have one owner or several.
    """
    UNIQUE = NamedConstant()
    GROUP = NamedConstant()



class NameStatus(Names):
    """
    The state of a registered name.  Only L{ACTIVE} names are visible to
    queries.
    """
    ACTIVE = NamedConstant()
    CONFLICT = NamedConstant()
    RELEASING = NamedConstant()



@attr.s
class NameRecord:
    """
    A registered name.

    @ivar owners: The IPv4 addresses owning the name, as dotted quads, in
        registration order.  A unique name has exactly one.

    @ivar deadline: When, in the registry clock's seconds, the record
        expires.

    @ivar refreshInterval: How far a refresh moves L{deadline} into the
        future.
    """
    name = attr.ib()
    type = attr.ib()
    status = attr.ib(default=NameStatus.ACTIVE)
    owners = attr.ib(factory=list)
    deadline = attr.ib(default=0)
    refreshInterval = attr.ib(default=0)
    scopeID = attr.ib(default="")



class _ReadWriteLock:
    """
    A lock allowing many readers or one writer.

    Writers waiting for the lock keep new readers out, so a steady stream
    of queries cannot starve registrations.
    """

    def __init__(self):
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False
        self._waitingWriters = 0


    def acquireRead(self):
        with self._condition:
            while self._writing or self._waitingWriters:
                self._condition.wait()
            self._readers += 1


    def releaseRead(self):
        with self._condition:
            self._readers -= 1
            if not self._readers:
                self._condition.notify_all()


    def acquireWrite(self):
        with self._condition:
            self._waitingWriters += 1
            while self._writing or self._readers:
                self._condition.wait()
            self._waitingWriters -= 1
            self._writing = True


    def releaseWrite(self):
        with self._condition:
            self._writing = False
            self._condition.notify_all()



def _reading(method):
    @wraps(method)
    def locked(self, *args, **kwargs):
        self._lock.acquireRead()
        try:
            return method(self, *args, **kwargs)
        finally:
            self._lock.releaseRead()
    return locked



def _writing(method):
    @wraps(method)
    def locked(self, *args, **kwargs):
        self._lock.acquireWrite()
        try:
            return method(self, *args, **kwargs)
        finally:
            self._lock.releaseWrite()
    return locked



class NameRegistry:
    """
    Maps NetBIOS names, with their scope, to L{NameRecord}s.

    Every operation is atomic, so the registry may also be used from threads
    other than the reactor's.

    @ivar clock: The L{IReactorTime} provider deadlines are measured with.
    """
    log = Logger()

    def __init__(self, clock=None):
        if clock is None:
            from twisted.internet import reactor as clock
        self.clock = clock
        self._records = {}
        self._lock = _ReadWriteLock()


    @_reading
    def __len__(self):
        return len(self._records)


    @_writing
    def register(self, name, type, owner, ttl, scopeID=""):
        """
        Register C{owner} for C{name}.

        A new name becomes active with C{owner} as its only owner, and
        expires C{ttl} seconds from now.  Registering a group name again
        adds C{owner} to its owners, unless it is already one, and pushes
        the deadline back.

        @type name: L{str}
        @type type: L{NameType}
        @param owner: A dotted-quad IPv4 address.
        @param ttl: Seconds until the registration expires, and also the
            refresh interval.

        @raise NameConflictError: If the name is registered and either the
            registration or the existing name is unique.
        """
        key = (name, scopeID)
        now = self.clock.seconds()
        record = self._records.get(key)
        if record is None:
            self._records[key] = NameRecord(
                name=name, type=type, owners=[owner], deadline=now + ttl,
                refreshInterval=ttl, scopeID=scopeID)
            self.log.debug(
                "Registered {type} name {name!r} for {owner}",
                type=type.name, name=name, owner=owner)
            return
        if type is not NameType.GROUP or record.type is not NameType.GROUP:
            raise NameConflictError(name, record.owners[:])
        if owner in record.owners:
            return
        record.owners.append(owner)
        record.deadline = now + ttl
        self.log.debug(
            "Added {owner} to group name {name!r}", owner=owner, name=name)


    @_reading
    def query(self, name, scopeID=""):
        """
        @return: A copy of the owners of C{name} and its L{NameType}.
        @rtype: L{tuple} of L{list} and L{NameType}

        @raise NameNotFoundError: If C{name} is not registered, or is not
            active.
        """
        record = self._records.get((name, scopeID))
        if record is None or record.status is not NameStatus.ACTIVE:
            raise NameNotFoundError(name)
        return record.owners[:], record.type


    @_reading
    def getRecord(self, name, scopeID=""):
        """
        @return: A copy of the record for C{name}, whatever its status, or
            L{None}.
        """
        record = self._records.get((name, scopeID))
        if record is None:
            return None
        return attr.evolve(record, owners=record.owners[:])


    @_writing
    def release(self, name, owner, scopeID=""):
        """
        Remove C{owner} from the owners of C{name}.  The record is deleted
        when its last owner is removed.

        @raise NameNotFoundError: If C{name} is not registered.
        @raise OwnerMismatchError: If C{owner} does not own C{name}.
        """
        key = (name, scopeID)
        record = self._records.get(key)
        if record is None:
            raise NameNotFoundError(name)
        if owner not in record.owners:
            raise OwnerMismatchError(name, owner)
        record.owners.remove(owner)
        if not record.owners:
            del self._records[key]
        self.log.debug(
            "Released {name!r} for {owner}", name=name, owner=owner)


    @_writing
    def refresh(self, name, owner, scopeID=""):
        """
        Push the deadline of C{name} back to one refresh interval from now.

        @raise NameNotFoundError: If C{name} is not registered.
        @raise OwnerMismatchError: If C{owner} does not own C{name}.
        """
        record = self._records.get((name, scopeID))
        if record is None:
            raise NameNotFoundError(name)
        if owner not in record.owners:
            raise OwnerMismatchError(name, owner)
        record.deadline = self.clock.seconds() + record.refreshInterval


    @_writing
    def markConflict(self, name, scopeID=""):
        """
        Hide C{name} from queries.

        @raise NameNotFoundError: If C{name} is not registered.
        """
        record = self._records.get((name, scopeID))
        if record is None:
            raise NameNotFoundError(name)
        record.status = NameStatus.CONFLICT
        self.log.info("Name {name!r} is in conflict", name=name)


    @_writing
    def cleanExpired(self):
        """
        Delete every record whose deadline has passed.

        @return: How many records were deleted.
        @rtype: L{int}
        """
        now = self.clock.seconds()
        expired = [key for key, record in self._records.items()
                   if record.deadline < now]
        for key in expired:
            del self._records[key]
        if expired:
            self.log.debug("Expired {count} names", count=len(expired))
        return len(expired)
