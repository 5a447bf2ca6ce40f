# Overview: Network-reachability signal consulted before the online sale path.

from __future__ import annotations


class ConnectivityMonitor:
    """
    is_online() = not forced offline AND the ledger host answers a HEAD probe.

    A probe that gets any HTTP response counts as online; a transport failure or
    timeout counts as offline.
    """

    def __init__(self, ledger, *, probe_timeout: float = 3.0, force_offline: bool = False):
        self.ledger = ledger
        self.probe_timeout = probe_timeout
        self.force_offline = force_offline

    def is_online(self) -> bool:
        if self.force_offline:
            return False
        return self.ledger.probe(self.probe_timeout)
