"""
Harness - Drives a test run and records what happened

Components:
- Generators: pull-based operation streams
- PhaseController / PhaseBarrier: test phases and their rendezvous
- WorkerPool: client workers and the nemesis worker
- HistoryLog / History: the concurrent history and its frozen snapshot
- ErrorHandler: harness fault taxonomy and retries
- DSLLoader / DSLValidator, RunStore, RunLogger: configuration and artifacts

The run controller lives in harness.test_runner.
"""
from .generator import (
    EXHAUSTED,
    Generator,
    GeneratorContext,
    GeneratorError,
    from_fn,
    once,
    seq,
    cycle,
    sleep,
    each_process,
    then,
    mix,
    round_robin,
    clients_nemesis,
    on_processes,
    drain
)
from .barrier import PhaseBarrier, PhaseController
from .history import History, HistoryLog, OpPair, HistoryInvariantError, HistoryClosedError, HistoryPhaseError
from .error_handler import ErrorHandler, ErrorContext, ErrorCategory, ErrorSeverity, RetryConfig
from .worker_pool import WorkerPool, WorkerShared, call_with_timeout
from .dsl_utils import DSLLoader, DSLValidator
from .store import RunStore
from .run_logger import RunLogger

__all__ = [
    'EXHAUSTED',
    'Generator',
    'GeneratorContext',
    'GeneratorError',
    'from_fn',
    'once',
    'seq',
    'cycle',
    'sleep',
    'each_process',
    'then',
    'mix',
    'round_robin',
    'clients_nemesis',
    'on_processes',
    'drain',
    'PhaseBarrier',
    'PhaseController',
    'History',
    'HistoryLog',
    'OpPair',
    'HistoryInvariantError',
    'HistoryClosedError',
    'HistoryPhaseError',
    'ErrorHandler',
    'ErrorContext',
    'ErrorCategory',
    'ErrorSeverity',
    'RetryConfig',
    'WorkerPool',
    'WorkerShared',
    'call_with_timeout',
    'DSLLoader',
    'DSLValidator',
    'RunStore',
    'RunLogger',
]
