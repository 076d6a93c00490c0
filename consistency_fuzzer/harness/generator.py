"""
Operation Generator - Pull-based, composable streams of operations

A generator only describes intent: next(context) returns the next Operation
to invoke for the requesting process, or EXHAUSTED. Generators may be called
concurrently by every worker and by the nemesis; stateful generators guard
their own state with a lock and never hold it while delegating or sleeping.
"""
import time
import random
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union
from ..models import Operation, NEMESIS, Process, invoke_op

logger = logging.getLogger(__name__)


class _Exhausted:
    """Terminal signal returned by a generator with nothing left to emit"""

    def __repr__(self):
        return "EXHAUSTED"

    def __bool__(self):
        return False


EXHAUSTED = _Exhausted()


class GeneratorError(RuntimeError):
    """A generator produced something that is not an operation"""


@dataclass
class GeneratorContext:
    """What a generator may know when asked for the next operation"""
    process: Process
    worker: Any
    concurrency: int
    clock: Callable[[], float] = field(default=lambda: 0.0)
    abort: Optional[threading.Event] = None
    last: Optional[Operation] = None
    deadline: Optional[float] = None  # Elapsed time at which an enclosing time_limit expires

    @property
    def elapsed(self) -> float:
        """Seconds since the active phase started"""
        return self.clock()

    @property
    def is_nemesis(self) -> bool:
        return self.process == NEMESIS

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()

    def sleep(self, seconds: float) -> bool:
        """
        Sleep unless aborted, and never past the deadline. Returns False when
        the run was aborted or the deadline arrived first.
        """
        if seconds <= 0:
            return not self.aborted
        if self.deadline is not None:
            remaining = self.deadline - self.elapsed
            if remaining <= seconds:
                self._wait(max(remaining, 0.0))
                return False
        return self._wait(seconds)

    def _wait(self, seconds: float) -> bool:
        if self.abort is None:
            time.sleep(seconds)
            return True
        return not self.abort.wait(seconds)

    def within(self, deadline: float) -> "GeneratorContext":
        """This context, bounded by deadline as well as any deadline it already has"""
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)


GenResult = Union[Operation, _Exhausted]


class Generator(ABC):
    """Base class for operation generators"""

    @abstractmethod
    def next(self, context: GeneratorContext) -> GenResult:
        pass

    def limit(self, count: int) -> "Limit":
        return Limit(self, count)

    def time_limit(self, seconds: float) -> "TimeLimit":
        return TimeLimit(self, seconds)

    def stagger(self, mean_delay: float, seed: Optional[int] = None) -> "Stagger":
        return Stagger(self, mean_delay, seed)

    def delay(self, seconds: float) -> "Delay":
        return Delay(self, seconds)

    def then(self, *others: "Generator") -> "Then":
        return Then(self, *others)


def _coerce(result: Any, context: GeneratorContext) -> GenResult:
    """Normalise what a user function returned into an invocation"""
    if result is None or result is EXHAUSTED:
        return EXHAUSTED
    if isinstance(result, Operation):
        return result
    if isinstance(result, dict):
        return invoke_op(context.process, result['f'], result.get('key'), result.get('value'))
    raise GeneratorError(f"Generator produced {result!r}, expected an Operation")


class FnGenerator(Generator):
    """Calls fn(context) for every operation; fn returns None when done"""

    def __init__(self, fn: Callable[[GeneratorContext], Any]):
        self.fn = fn

    def next(self, context):
        return _coerce(self.fn(context), context)


class Seq(Generator):
    """Emits each operation exactly once, in order, to whichever process asks"""

    def __init__(self, ops: Sequence[Any]):
        self.ops = list(ops)
        self.index = 0
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            if self.index >= len(self.ops):
                return EXHAUSTED
            op = self.ops[self.index]
            self.index += 1
        return _coerce(op, context)


class Cycle(Generator):
    """Emits the given operations round and round, forever"""

    def __init__(self, ops: Sequence[Any]):
        if not ops:
            raise ValueError("Cycle needs at least one operation")
        self.ops = list(ops)
        self.index = 0
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            op = self.ops[self.index % len(self.ops)]
            self.index += 1
        return _coerce(op, context)


class Sleep(Generator):
    """Sleeps once per worker, then is exhausted for that worker"""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._slept = set()
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            if context.worker in self._slept:
                return EXHAUSTED
            self._slept.add(context.worker)
        context.sleep(self.seconds)
        return EXHAUSTED


class EachProcess(Generator):
    """
    Gives every worker its own copy of a generator built by factory().
    Keyed on the worker rather than the process id, since a worker takes a
    new process id after an indeterminate operation.
    """

    def __init__(self, factory: Callable[[], Generator]):
        self.factory = factory
        self._gens: Dict[Any, Generator] = {}
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            gen = self._gens.get(context.worker)
            if gen is None:
                gen = self._gens[context.worker] = self.factory()
        return gen.next(context)


class Then(Generator):
    """Runs generators one after another; each worker advances independently"""

    def __init__(self, *gens: Generator):
        self.gens = list(gens)
        self._index: Dict[Any, int] = {}
        self._lock = threading.Lock()

    def next(self, context):
        while True:
            with self._lock:
                index = self._index.get(context.worker, 0)
            if index >= len(self.gens):
                return EXHAUSTED
            op = self.gens[index].next(context)
            if op is not EXHAUSTED:
                return op
            if context.aborted:
                return EXHAUSTED
            with self._lock:
                if self._index.get(context.worker, 0) == index:
                    self._index[context.worker] = index + 1


class _PerWorkerChoice(Generator):
    """
    Chooses among sub-generators. A sub-generator that is exhausted for one
    worker may still have operations for another, so exhaustion is tracked
    per worker.
    """

    def __init__(self, gens: Sequence[Generator]):
        self.gens = list(gens)
        self._exhausted: Dict[Any, Set[int]] = {}
        self._lock = threading.Lock()

    def order(self, live: List[int]) -> List[int]:
        raise NotImplementedError

    def next(self, context):
        with self._lock:
            done = self._exhausted.setdefault(context.worker, set())
            candidates = self.order([i for i in range(len(self.gens)) if i not in done])
        for i in candidates:
            op = self.gens[i].next(context)
            if op is not EXHAUSTED:
                return op
            with self._lock:
                self._exhausted[context.worker].add(i)
        return EXHAUSTED


class Mix(_PerWorkerChoice):
    """Picks a random sub-generator for each operation"""

    def __init__(self, gens: Sequence[Generator], seed: Optional[int] = None):
        super().__init__(gens)
        self.rng = random.Random(seed)

    def order(self, live):
        # Caller holds self._lock
        self.rng.shuffle(live)
        return live


class RoundRobin(_PerWorkerChoice):
    """Merges sub-generators by taking from each in turn"""

    def __init__(self, gens: Sequence[Generator]):
        super().__init__(gens)
        self.index = 0

    def order(self, live):
        # Caller holds self._lock
        if not live:
            return live
        start = self.index % len(self.gens)
        self.index += 1
        return sorted(live, key=lambda i: (i - start) % len(self.gens))


class Limit(Generator):
    """Emits at most count operations in total, across all workers"""

    def __init__(self, gen: Generator, count: int):
        self.gen = gen
        self.remaining = count
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            if self.remaining <= 0:
                return EXHAUSTED
            self.remaining -= 1
        op = self.gen.next(context)
        if op is EXHAUSTED:
            # Nothing was emitted; other workers may still use the slot
            with self._lock:
                self.remaining += 1
        return op


class TimeLimit(Generator):
    """
    Exhausts once `seconds` have elapsed since its first use. The deadline is
    passed down, so that delays inside it end when it does.
    """

    def __init__(self, gen: Generator, seconds: float):
        self.gen = gen
        self.seconds = seconds
        self.deadline: Optional[float] = None
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            if self.deadline is None:
                self.deadline = context.elapsed + self.seconds
            deadline = self.deadline
        if context.elapsed >= deadline:
            return EXHAUSTED
        op = self.gen.next(context.within(deadline))
        if op is EXHAUSTED or context.elapsed >= deadline:
            return EXHAUSTED
        return op


class Stagger(Generator):
    """Rate limits: waits a random delay in [0, 2 * mean_delay) before each operation"""

    def __init__(self, gen: Generator, mean_delay: float, seed: Optional[int] = None):
        self.gen = gen
        self.mean_delay = mean_delay
        self.rng = random.Random(seed)
        self._lock = threading.Lock()

    def next(self, context):
        with self._lock:
            delay = self.rng.uniform(0, 2 * self.mean_delay)
        if not context.sleep(delay):
            return EXHAUSTED
        return self.gen.next(context)


class Delay(Generator):
    """Waits a fixed interval before each operation"""

    def __init__(self, gen: Generator, seconds: float):
        self.gen = gen
        self.seconds = seconds

    def next(self, context):
        if not context.sleep(self.seconds):
            return EXHAUSTED
        return self.gen.next(context)


class ClientsNemesis(Generator):
    """Routes client processes and the nemesis to separate generators"""

    def __init__(self, clients: Optional[Generator] = None, nemesis: Optional[Generator] = None):
        self.clients = clients
        self.nemesis = nemesis

    def next(self, context):
        gen = self.nemesis if context.is_nemesis else self.clients
        if gen is None:
            return EXHAUSTED
        return gen.next(context)


class OnProcesses(Generator):
    """Only answers processes accepted by predicate; everyone else sees EXHAUSTED"""

    def __init__(self, predicate: Callable[[Process], bool], gen: Generator):
        self.predicate = predicate
        self.gen = gen

    def next(self, context):
        if not self.predicate(context.process):
            return EXHAUSTED
        return self.gen.next(context)


def from_fn(fn: Callable[[GeneratorContext], Any]) -> FnGenerator:
    return FnGenerator(fn)


def once(op: Any) -> Seq:
    return Seq([op])


def seq(ops: Sequence[Any]) -> Seq:
    return Seq(ops)


def cycle(ops: Sequence[Any]) -> Cycle:
    return Cycle(ops)


def sleep(seconds: float) -> Sleep:
    return Sleep(seconds)


def each_process(factory: Callable[[], Generator]) -> EachProcess:
    return EachProcess(factory)


def then(*gens: Generator) -> Then:
    return Then(*gens)


def mix(gens: Sequence[Generator], seed: Optional[int] = None) -> Mix:
    return Mix(gens, seed)


def round_robin(gens: Sequence[Generator]) -> RoundRobin:
    return RoundRobin(gens)


def clients_nemesis(clients: Optional[Generator] = None, nemesis: Optional[Generator] = None) -> ClientsNemesis:
    return ClientsNemesis(clients, nemesis)


def on_processes(predicate: Callable[[Process], bool], gen: Generator) -> OnProcesses:
    return OnProcesses(predicate, gen)


def drain(gen: Generator, context: GeneratorContext, max_ops: int = 10_000) -> List[Operation]:
    """Pull operations until exhausted; handy for inspecting finite generators"""
    ops = []
    while len(ops) < max_ops:
        op = gen.next(context)
        if op is EXHAUSTED:
            break
        ops.append(op)
    return ops
