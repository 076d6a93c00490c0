"""
Phase Barrier - Rendezvous of workers and the nemesis at test phase transitions
"""
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from ..models import TestPhase, BarrierOutcome, HarnessFault

logger = logging.getLogger(__name__)


class PhaseController:
    """
    Holds the global test phase. Only the run controller (directly, or through
    a barrier it owns) advances it; every other component only reads it.
    """

    def __init__(self, phase: TestPhase = TestPhase.SETUP):
        self._phase = phase
        self._cond = threading.Condition()

    @property
    def phase(self) -> TestPhase:
        return self._phase

    def advance(self, to: TestPhase) -> None:
        """Move forward to `to`; moving backwards is ignored"""
        with self._cond:
            phases = list(TestPhase)
            if phases.index(to) <= phases.index(self._phase):
                return
            logger.info(f"Test phase {self._phase.value} -> {to.value}")
            self._phase = to
            self._cond.notify_all()

    def wait_for(self, phase: TestPhase, timeout: Optional[float] = None) -> bool:
        """Block until the phase is at least `phase`"""
        phases = list(TestPhase)
        with self._cond:
            return self._cond.wait_for(
                lambda: phases.index(self._phase) >= phases.index(phase),
                timeout=timeout
            )


@dataclass
class _Rendezvous:
    """Arrival state for one phase"""
    arrived: List[str] = field(default_factory=list)
    deadline: Optional[float] = None
    released: bool = False
    broken: bool = False


class PhaseBarrier:
    """
    Counting rendezvous with a bounded wait.

    wait(phase) blocks until `parties` participants have arrived for that
    phase, then releases them together and advances the controller to the
    next phase. If the grace period (counted from the first arrival) runs out
    first, the phase is broken: waiters are released with broken=True, the
    phase still advances and a harness fault is recorded. Participants that
    arrive after the phase was released return at once.
    """

    def __init__(
        self,
        parties: int,
        controller: PhaseController,
        grace_period: float = 30.0,
        on_fault: Optional[Callable[[HarnessFault], None]] = None
    ):
        if parties < 1:
            raise ValueError("PhaseBarrier needs at least one participant")
        self.parties = parties
        self.controller = controller
        self.grace_period = grace_period
        self.on_fault = on_fault
        self.faults: List[HarnessFault] = []
        self._rendezvous: Dict[TestPhase, _Rendezvous] = {}
        self._cond = threading.Condition()

    def wait(self, phase: TestPhase, participant: str = "anonymous") -> BarrierOutcome:
        with self._cond:
            rv = self._rendezvous.setdefault(phase, _Rendezvous())
            if rv.released:
                logger.warning(f"{participant} reached the {phase.value} barrier after it was released")
                return self._outcome(phase, rv)

            rv.arrived.append(participant)
            if rv.deadline is None:
                rv.deadline = time.monotonic() + self.grace_period

            if len(rv.arrived) >= self.parties:
                self._release(phase, rv)
                return self._outcome(phase, rv)

            while not rv.released:
                remaining = rv.deadline - time.monotonic()
                if remaining <= 0:
                    rv.broken = True
                    self._release(phase, rv)
                    break
                self._cond.wait(remaining)

            return self._outcome(phase, rv)

    def break_phase(self, phase: TestPhase, reason: str) -> None:
        """Release everyone waiting for phase without waiting for the grace period"""
        with self._cond:
            rv = self._rendezvous.setdefault(phase, _Rendezvous())
            if rv.released:
                return
            logger.warning(f"Breaking {phase.value} barrier: {reason}")
            rv.broken = True
            self._release(phase, rv, reason)

    def is_broken(self, phase: TestPhase) -> bool:
        with self._cond:
            rv = self._rendezvous.get(phase)
            return rv is not None and rv.broken

    def _release(self, phase: TestPhase, rv: _Rendezvous, reason: Optional[str] = None) -> None:
        # Caller holds self._cond
        rv.released = True
        if rv.broken:
            missing = self.parties - len(rv.arrived)
            message = reason or (
                f"{missing} of {self.parties} participants did not reach the "
                f"{phase.value} barrier within {self.grace_period:.1f}s"
            )
            fault = HarnessFault(category="broken_barrier", message=message, phase=phase.value)
            self.faults.append(fault)
            logger.error(f"Barrier broken: {message}")
            if self.on_fault:
                self.on_fault(fault)
        else:
            logger.debug(f"All {self.parties} participants reached the {phase.value} barrier")
        self.controller.advance(phase.next_phase())
        self._cond.notify_all()

    def _outcome(self, phase: TestPhase, rv: _Rendezvous) -> BarrierOutcome:
        return BarrierOutcome(
            phase=phase,
            broken=rv.broken,
            arrived=tuple(rv.arrived),
            missing=max(0, self.parties - len(rv.arrived))
        )
