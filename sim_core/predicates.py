"""
sim_core/predicates.py
──────────────────────
The admissibility-checker contract: "does pod P fit on node N, given the
snapshot as it is right now?"

The simulation core does not decide fit itself. It calls an injected
PredicateChecker, which in a real deployment is backed by the scheduler's
filter chain (simulator.control_plane.predicate_checker ships a reference
implementation). Keeping the policy out of the core means the same
simulator works unchanged with any filter set.

Call contract
─────────────
  check_predicates(snapshot, pod, node_name) → PredicateVerdict

  • Pure function of (snapshot state, pod, node). No hidden state: the
    simulator calls it many times against a snapshot it keeps mutating,
    and relies on every call reflecting the latest bindings.
  • "Does not fit" is a normal answer, returned as a rejected verdict with
    at least one human-readable reason.
  • An internal fault (the checker itself broke) is raised as
    PredicateCheckerError. The simulator treats that node as inadmissible
    for this attempt and keeps scanning.
  • FatalPredicateCheckerError is the escape hatch for callers that want a
    checker fault to abort the whole batch. The simulator re-raises it.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, TYPE_CHECKING

from simulator.shared.models import Pod

if TYPE_CHECKING:
    from sim_core.snapshot import ClusterSnapshot


class PredicateCheckerError(Exception):
    """
    The checker failed internally, as opposed to answering "no fit".

    Attributes:
        node_name: Node being checked when the fault happened, if known.
    """

    def __init__(self, message: str, node_name: Optional[str] = None) -> None:
        self.node_name = node_name
        super().__init__(message)


class FatalPredicateCheckerError(PredicateCheckerError):
    """A checker fault that must abort the simulation batch."""


@dataclass(frozen=True)
class PredicateVerdict:
    """
    Result of one admissibility check.

    fits=True  → admissible; predicate_name and reasons are empty.
    fits=False → inadmissible; predicate_name names the first failing
                 filter and reasons is never empty.

    Build with PredicateVerdict.admit() / PredicateVerdict.reject().
    """

    fits: bool
    predicate_name: str = ""
    reasons: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.fits and not self.reasons:
            raise ValueError("A rejected PredicateVerdict needs at least one reason.")

    @classmethod
    def admit(cls) -> "PredicateVerdict":
        return cls(fits=True)

    @classmethod
    def reject(cls, predicate_name: str, reasons: Sequence[str]) -> "PredicateVerdict":
        return cls(fits=False, predicate_name=predicate_name, reasons=tuple(reasons))


class PredicateChecker(abc.ABC):
    """Injected admissibility capability. See module docstring for the contract."""

    @abc.abstractmethod
    def check_predicates(
        self,
        snapshot: "ClusterSnapshot",
        pod: Pod,
        node_name: str,
    ) -> PredicateVerdict:
        """Decide whether `pod` fits on `node_name` in the current `snapshot`."""
