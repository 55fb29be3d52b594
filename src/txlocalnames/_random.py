# -*- test-case-name: txlocalnames.test.test_random -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Transaction ID generation shared by the LLMNR client and the NetBIOS name
challenger.
"""

import random


class TransactionIDSource:
    """
    A callable returning 16-bit transaction IDs.

    IDs only correlate requests with responses, so a seeded pseudo-random
    generator is enough.  Tests pass their own C{random.Random} to get a
    reproducible sequence.

    @ivar _rng: The generator IDs are drawn from.
    @type _rng: L{random.Random}
    """

    def __init__(self, rng=None):
        if rng is None:
            rng = random.Random()
        self._rng = rng


    def __call__(self):
        """
        @return: A new transaction ID.
        @rtype: L{int} in C{range(0x10000)}
        """
        return self._rng.randrange(0x10000)



randomSource = TransactionIDSource()
