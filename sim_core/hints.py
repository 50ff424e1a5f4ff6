"""
sim_core/hints.py
─────────────────
Hint table: where did the last pod of this kind land?

Replicas of one controller tend to fit on the same kind of node, and while
a node has room left, the next replica will fit there too. Trying that node
first turns the steady state from #nodes admissibility checks per pod into
one.

Keys are built by hint_key(): controlled pods share a key with every pod of
the same controller and equivalence signature; bare pods get a key of their
own. Hints are only ever a starting guess; the simulator still runs the
admissibility check on the hinted node.
"""

from __future__ import annotations

from typing import Dict, Optional, Set

from simulator.shared.models import Pod
from sim_core.similar_pods import EquivalenceSignature


def hint_key(pod: Pod, signature: Optional[EquivalenceSignature] = None) -> str:
    """
    Hint-table key for a pod.

    controller uid + signature digest for controlled pods, so equivalent
    replicas share one hint; pod.key for everything else. Pass `signature`
    when the pod's EquivalenceSignature is already at hand.
    """
    ref = pod.controller_ref()
    if ref is None:
        return pod.key
    signature = signature or EquivalenceSignature.from_pod(pod)
    return f"{ref.uid}/{signature.digest()}"


class Hints:
    """
    key → node name, with generation-based expiry.

    drop_old() removes every hint that has not been set since the previous
    drop_old() call, so a long-lived simulator forgets hints for pod kinds
    it stopped seeing.
    """

    def __init__(self) -> None:
        self._hints: Dict[str, str] = {}
        self._fresh: Set[str] = set()

    def get(self, key: str) -> Optional[str]:
        return self._hints.get(key)

    def set(self, key: str, node_name: str) -> None:
        self._hints[key] = node_name
        self._fresh.add(key)

    def drop(self, key: str) -> None:
        self._hints.pop(key, None)
        self._fresh.discard(key)

    def drop_old(self) -> None:
        self._hints = {k: v for k, v in self._hints.items() if k in self._fresh}
        self._fresh = set()

    def __len__(self) -> int:
        return len(self._hints)

    def __contains__(self, key: str) -> bool:
        return key in self._hints
