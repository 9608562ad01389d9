"""Clients for the coordination service.

Provides:
- CoordinationClient: the facade the recipes are built on
- Connection: the abstract wire-client boundary
- KazooConnection: a real ZooKeeper ensemble, through kazoo
- InMemoryEnsemble / InMemoryConnection: a process-local namespace

Example:
    from zkcoord.client import CoordinationClient, InMemoryEnsemble

    ensemble = InMemoryEnsemble()
    client = CoordinationClient(ensemble.connect())
"""

from zkcoord.client.base import Connection, StateListener, Watcher
from zkcoord.client.kazoo import KazooConnection
from zkcoord.client.memory import InMemoryConnection, InMemoryEnsemble
from zkcoord.client.threaded import CoordinationClient

__all__ = [
    "Connection",
    "Watcher",
    "StateListener",
    "KazooConnection",
    "InMemoryEnsemble",
    "InMemoryConnection",
    "CoordinationClient",
]
