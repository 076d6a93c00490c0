"""
History Log - Append-only, thread-safe ledger of every invocation and completion
"""
import time
import logging
import threading
from collections import OrderedDict, abc
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from ..models import Event, Operation, OpKind, Process, TestPhase, NEMESIS
from .barrier import PhaseController

logger = logging.getLogger(__name__)


class HistoryInvariantError(RuntimeError):
    """Recording this event would break per-process invoke/completion alternation"""


class HistoryClosedError(RuntimeError):
    """The history was snapshotted; no further events may be recorded"""


class HistoryPhaseError(RuntimeError):
    """A snapshot was requested before the run reached the analyzing phase"""


@dataclass(frozen=True)
class OpPair:
    """An invocation and its completion (None if it never completed)"""
    invoke: Event
    complete: Optional[Event]

    @property
    def process(self) -> Process:
        return self.invoke.process

    @property
    def f(self) -> str:
        return self.invoke.f

    @property
    def key(self) -> Any:
        return self.invoke.key

    @property
    def kind(self) -> OpKind:
        """Terminal kind; an invocation that never completed counts as info"""
        return self.complete.kind if self.complete else OpKind.INFO

    @property
    def value(self) -> Any:
        """Completion value for ok ops, otherwise the invoked value"""
        if self.complete is not None and self.complete.kind == OpKind.OK:
            return self.complete.value
        return self.invoke.value

    @property
    def start(self) -> int:
        return self.invoke.sequence

    @property
    def end(self) -> Optional[int]:
        """Sequence of the completion; None when the op may still be in effect"""
        if self.complete is None or self.complete.kind == OpKind.INFO:
            return None
        return self.complete.sequence

    def overlaps(self, other: "OpPair") -> bool:
        """Real-time overlap of the two operation intervals"""
        self_end = self.end if self.end is not None else float('inf')
        other_end = other.end if other.end is not None else float('inf')
        return self.start < other_end and other.start < self_end

    def describe(self) -> Dict[str, Any]:
        data = {
            'process': self.process,
            'f': self.f,
            'key': self.key,
            'value': self.value,
            'kind': self.kind.value,
            'invoke_index': self.start,
            'complete_index': self.complete.sequence if self.complete else None,
        }
        if self.complete is not None and self.complete.op.error:
            data['error'] = self.complete.op.error
        return data


class History(abc.Sequence):
    """Immutable, ordered sequence of events"""

    def __init__(self, events: Sequence[Event]):
        self._events: Tuple[Event, ...] = tuple(events)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return History(self._events[index])
        return self._events[index]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __eq__(self, other) -> bool:
        if isinstance(other, History):
            return self._events == other._events
        return NotImplemented

    def __repr__(self) -> str:
        return f"History({len(self._events)} events)"

    @property
    def events(self) -> Tuple[Event, ...]:
        return self._events

    def filter(self, predicate: Callable[[Event], bool]) -> "History":
        return History([e for e in self._events if predicate(e)])

    def client_ops(self) -> "History":
        return self.filter(lambda e: e.process != NEMESIS)

    def nemesis_ops(self) -> "History":
        return self.filter(lambda e: e.process == NEMESIS)

    def count(self, kind: OpKind) -> int:
        return sum(1 for e in self._events if e.kind == kind)

    def pairs(self) -> List[OpPair]:
        """Match every invocation with its completion, in invocation order"""
        open_invokes: Dict[Process, Event] = {}
        pairs: "OrderedDict[int, OpPair]" = OrderedDict()
        for event in self._events:
            if event.kind == OpKind.INVOKE:
                open_invokes[event.process] = event
                pairs[event.sequence] = OpPair(event, None)
            else:
                invoke = open_invokes.pop(event.process, None)
                if invoke is None:
                    raise HistoryInvariantError(
                        f"Completion without invocation for process {event.process} at {event.sequence}"
                    )
                pairs[invoke.sequence] = OpPair(invoke, event)
        return list(pairs.values())

    def by_key(self) -> "OrderedDict[Any, History]":
        """Split client operations into independent per-key histories"""
        groups: "OrderedDict[Any, List[Event]]" = OrderedDict()
        for event in self.client_ops():
            groups.setdefault(event.key, []).append(event)
        return OrderedDict((k, History(v)) for k, v in groups.items())

    def validate(self) -> None:
        """Raise HistoryInvariantError unless invocations and completions alternate per process"""
        outstanding: Dict[Process, Event] = {}
        last_timestamp: Dict[Process, float] = {}
        previous_sequence = None
        for event in self._events:
            if previous_sequence is not None and event.sequence <= previous_sequence:
                raise HistoryInvariantError(f"Sequence numbers not increasing at {event.sequence}")
            previous_sequence = event.sequence
            if event.timestamp < last_timestamp.get(event.process, float('-inf')):
                raise HistoryInvariantError(f"Timestamp went backwards for process {event.process}")
            last_timestamp[event.process] = event.timestamp
            _check_alternation(outstanding, event.op)
            if event.kind == OpKind.INVOKE:
                outstanding[event.process] = event
            else:
                outstanding.pop(event.process, None)


def _check_alternation(outstanding: Dict[Process, Any], op: Operation) -> None:
    pending = outstanding.get(op.process)
    if op.kind == OpKind.INVOKE:
        if pending is not None:
            raise HistoryInvariantError(
                f"Process {op.process} invoked {op.f} while {pending.op.f} is still outstanding"
            )
        return
    if pending is None:
        raise HistoryInvariantError(
            f"Process {op.process} completed {op.f} ({op.kind.value}) without an invocation"
        )
    if pending.op.f != op.f or pending.op.key != op.key:
        raise HistoryInvariantError(
            f"Process {op.process} completed {op.f}/{op.key} but invoked {pending.op.f}/{pending.op.key}"
        )


class HistoryLog:
    """
    Concurrency-safe recorder. Each record() assigns the next sequence number
    and a monotonic timestamp under a lock held only for the append. Once
    snapshot() is taken the log is frozen and record() raises. Given the
    run's phase controller, snapshot() refuses to freeze the log before the
    run is analyzing.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 controller: Optional[PhaseController] = None):
        self._clock = clock
        self._controller = controller
        self._start = clock()
        self._events: List[Event] = []
        self._outstanding: Dict[Process, Event] = {}
        self._snapshot: Optional[History] = None
        self._lock = threading.Lock()

    def elapsed(self) -> float:
        return self._clock() - self._start

    def record(self, op: Operation) -> Event:
        with self._lock:
            return self._append(op)

    def _append(self, op: Operation) -> Event:
        # Caller holds self._lock
        if self._snapshot is not None:
            raise HistoryClosedError(f"History is frozen; cannot record {op.kind.value} {op.f} for {op.process}")
        _check_alternation(self._outstanding, op)
        event = Event(sequence=len(self._events), timestamp=self._clock() - self._start, op=op)
        self._events.append(event)
        if op.kind == OpKind.INVOKE:
            self._outstanding[op.process] = event
        else:
            del self._outstanding[op.process]
        return event

    def outstanding(self) -> List[Operation]:
        with self._lock:
            return [e.op for e in self._outstanding.values()]

    def close_outstanding(self, reason: str) -> List[Event]:
        """Record an info completion for every invocation still open"""
        with self._lock:
            closed = self._close_outstanding(reason)
        return closed

    def _close_outstanding(self, reason: str) -> List[Event]:
        # Caller holds self._lock
        if self._snapshot is not None:
            return []
        closed = [self._append(e.op.info(reason)) for e in list(self._outstanding.values())]
        if closed:
            logger.warning(f"Closed {len(closed)} outstanding operations as info: {reason}")
        return closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def frozen(self) -> bool:
        return self._snapshot is not None

    def snapshot(self, close_reason: Optional[str] = None) -> History:
        """
        Freeze the log and return the immutable history; idempotent. With
        close_reason, invocations still open are first completed as info in
        the same critical section, so a straggling worker cannot slip a
        completion in between.
        """
        with self._lock:
            if self._snapshot is None:
                self._check_phase()
                if close_reason is not None:
                    self._close_outstanding(close_reason)
                self._snapshot = History(self._events)
                logger.info(f"History frozen with {len(self._events)} events")
            return self._snapshot

    def _check_phase(self) -> None:
        if self._controller is None:
            return
        phases = list(TestPhase)
        phase = self._controller.phase
        if phases.index(phase) < phases.index(TestPhase.ANALYZING):
            raise HistoryPhaseError(f"Cannot freeze the history during the {phase.value} phase")
