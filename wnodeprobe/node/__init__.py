"""Node peers, readiness probing and lifecycle supervision."""

from .peer import InProcessPeer, Peer, PeerExit, SubprocessPeer
from .readiness import wait_until_ready
from .signals import OneShot
from .supervisor import NodeState, NodeSupervisor

__all__ = [
    "InProcessPeer",
    "NodeState",
    "NodeSupervisor",
    "OneShot",
    "Peer",
    "PeerExit",
    "SubprocessPeer",
    "wait_until_ready",
]
