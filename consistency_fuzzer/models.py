"""
Core data models for the Consistency Fuzzer
"""
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple, Union
from enum import Enum


NEMESIS = "nemesis"

Process = Union[int, str]


class OpKind(Enum):
    """Kinds of history events"""
    INVOKE = "invoke"
    OK = "ok"
    FAIL = "fail"
    INFO = "info"

    @property
    def is_terminal(self) -> bool:
        return self is not OpKind.INVOKE


class TestPhase(Enum):
    """Global test phases, in order"""
    __test__ = False

    SETUP = "setup"
    ACTIVE = "active"
    TEARDOWN = "teardown"
    ANALYZING = "analyzing"
    DONE = "done"

    def next_phase(self) -> "TestPhase":
        phases = list(TestPhase)
        index = phases.index(self)
        return phases[min(index + 1, len(phases) - 1)]


class VerdictStatus(Enum):
    """Outcome of a checker run"""
    VALID = "valid"
    INVALID = "invalid"
    INDETERMINATE = "indeterminate"


def freeze_value(value: Any) -> Any:
    """Convert lists (and nested lists) into tuples so values stay hashable."""
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze_value(v) for v in value)
    return value


def thaw_value(value: Any) -> Any:
    """Inverse of freeze_value for serialization (tuples and sets become lists)."""
    if isinstance(value, (tuple, list)):
        return [thaw_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((thaw_value(v) for v in value), key=repr)
    return value


@dataclass(frozen=True)
class Operation:
    """A unit of work for a client or the nemesis, or the outcome of one"""
    process: Process
    kind: OpKind
    f: str
    key: Any = None
    value: Any = None
    error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'value', freeze_value(self.value))
        object.__setattr__(self, 'key', freeze_value(self.key))

    @property
    def action(self) -> Dict[str, Any]:
        return {'f': self.f, 'key': self.key, 'value': self.value}

    @property
    def is_nemesis(self) -> bool:
        return self.process == NEMESIS

    def with_process(self, process: Process) -> "Operation":
        return Operation(process, self.kind, self.f, self.key, self.value, self.error)

    def complete(self, kind: OpKind, value: Any = None, error: Optional[str] = None) -> "Operation":
        """Build the terminal operation matching this invocation."""
        return Operation(self.process, kind, self.f, self.key, value, error)

    def ok(self, value: Any = None) -> "Operation":
        return self.complete(OpKind.OK, self.value if value is None else value)

    def fail(self, error: Optional[str] = None) -> "Operation":
        return self.complete(OpKind.FAIL, self.value, error)

    def info(self, error: Optional[str] = None) -> "Operation":
        return self.complete(OpKind.INFO, self.value, error)


def invoke_op(process: Process, f: str, key: Any = None, value: Any = None) -> Operation:
    """Shorthand for an invocation operation"""
    return Operation(process=process, kind=OpKind.INVOKE, f=f, key=key, value=value)


@dataclass(frozen=True)
class Event:
    """An operation as recorded in the history"""
    sequence: int
    timestamp: float
    op: Operation

    @property
    def process(self) -> Process:
        return self.op.process

    @property
    def kind(self) -> OpKind:
        return self.op.kind

    @property
    def f(self) -> str:
        return self.op.f

    @property
    def key(self) -> Any:
        return self.op.key

    @property
    def value(self) -> Any:
        return self.op.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sequence': self.sequence,
            'timestamp': self.timestamp,
            'process': self.op.process,
            'kind': self.op.kind.value,
            'f': self.op.f,
            'key': thaw_value(self.op.key),
            'value': thaw_value(self.op.value),
            'error': self.op.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        op = Operation(
            process=data['process'],
            kind=OpKind(data['kind']),
            f=data['f'],
            key=data.get('key'),
            value=data.get('value'),
            error=data.get('error'),
        )
        return cls(sequence=int(data['sequence']), timestamp=float(data['timestamp']), op=op)


@dataclass
class NemesisConfig:
    """Fault schedule configuration"""
    faults: List[str] = field(default_factory=list)  # "partition", "kill", "pause", "clock"
    interval: float = 5.0  # Seconds between fault start and stop
    partition_strategy: str = "random-halves"
    target_strategy: str = "one"
    specific_nodes: Optional[List[str]] = None
    clock_skew_ms: int = 200


@dataclass
class CheckerConfig:
    """Bounds for the history checker"""
    max_configurations: int = 500_000
    time_limit: float = 60.0  # Seconds, per key


@dataclass
class TestConfig:
    """Complete test run configuration"""
    __test__ = False

    name: str = "register"
    workload: str = "register"  # "register", "cas-register", "set", "counter"
    target: str = "valkey"  # "valkey", "memory", "memory-stale"
    nodes: List[str] = field(default_factory=lambda: ["127.0.0.1:6379"])
    concurrency: int = 5
    time_limit: float = 30.0
    op_limit: Optional[int] = None
    rate: float = 10.0  # Ops per second, per worker
    keys: int = 5
    client_timeout: float = 5.0
    barrier_grace: float = 30.0
    final_read_delay: float = 2.0
    store_dir: str = "/tmp/consistency-fuzzer/store"
    seed: Optional[int] = None
    nemesis: NemesisConfig = field(default_factory=NemesisConfig)
    checker: CheckerConfig = field(default_factory=CheckerConfig)


@dataclass(frozen=True)
class HarnessFault:
    """A failure of the harness itself, reported apart from the checker verdict"""
    category: str
    message: str
    phase: Optional[str] = None
    participant: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'message': self.message,
            'phase': self.phase,
            'participant': self.participant,
        }


@dataclass(frozen=True)
class BarrierOutcome:
    """Result of waiting at a phase barrier"""
    phase: TestPhase
    broken: bool
    arrived: Tuple[str, ...] = ()
    missing: int = 0


@dataclass(frozen=True)
class CheckResult:
    """Result of one checker over one (sub)history"""
    status: VerdictStatus
    checker: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return self.status == VerdictStatus.VALID


@dataclass(frozen=True)
class Verdict:
    """Final judgement for a test run"""
    status: VerdictStatus
    model: str
    results: Tuple[CheckResult, ...] = ()
    stats: Dict[str, Any] = field(default_factory=dict)
    harness_faults: Tuple[HarnessFault, ...] = ()

    @property
    def valid(self) -> bool:
        return self.status == VerdictStatus.VALID

    @property
    def counterexamples(self) -> List[Dict[str, Any]]:
        return [r.details for r in self.results if r.status == VerdictStatus.INVALID]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'status': self.status.value,
            'model': self.model,
            'results': [
                {'checker': r.checker, 'status': r.status.value, 'details': r.details}
                for r in self.results
            ],
            'stats': self.stats,
            'harness_faults': [f.to_dict() for f in self.harness_faults],
        }


@dataclass
class ExecutionResult:
    """Complete test execution result"""
    test_name: str
    run_id: str
    start_time: float
    end_time: float
    verdict: Optional[Verdict]
    events_recorded: int = 0
    harness_faults: List[HarnessFault] = field(default_factory=list)
    warnings: List[HarnessFault] = field(default_factory=list)  # Degraded but still meaningful, e.g. a failed heal
    run_dir: Optional[str] = None
    error_message: Optional[str] = None
    seed: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.verdict is not None and self.verdict.valid and not self.harness_faults
