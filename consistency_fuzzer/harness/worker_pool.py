"""
Worker Pool - Client workers and the nemesis worker on a shared thread pool

Every worker owns its client connection and a process identity. It pulls
operations from the generator, records the invocation, calls the adapter
under a timeout and records exactly one completion. Per-operation errors end
up in the history as fail or info events; only harness faults (a broken
history invariant, a generator malfunction) escape a worker, after setting
the abort flag.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait
from dataclasses import dataclass
from typing import Any, Callable, List, Optional
from ..interfaces import IClient, INemesis, ClientFailure
from ..models import Operation, OpKind, TestPhase, NEMESIS, Process
from .barrier import PhaseBarrier, PhaseController
from .error_handler import ErrorHandler, ErrorContext, ErrorCategory, ErrorSeverity
from .generator import EXHAUSTED, Generator, GeneratorContext, GeneratorError
from .history import HistoryLog, HistoryClosedError, HistoryInvariantError

logger = logging.getLogger(__name__)


def call_with_timeout(fn: Callable[[], Any], timeout: Optional[float], name: str = "call") -> Any:
    """
    Run fn on a daemon thread and wait at most timeout seconds for it.
    Raises TimeoutError if it has not returned by then; the call is left
    running, its eventual result is discarded.
    """
    if timeout is None:
        return fn()

    outcome = {}

    def target():
        try:
            outcome['result'] = fn()
        except BaseException as e:
            outcome['error'] = e

    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    thread.join(timeout)
    if thread.is_alive():
        raise TimeoutError(f"{name} did not complete within {timeout:.1f}s")
    if 'error' in outcome:
        raise outcome['error']
    return outcome.get('result')


@dataclass
class WorkerShared:
    """Everything the workers of one run share"""
    generator: Generator
    log: HistoryLog
    controller: PhaseController
    barrier: PhaseBarrier
    abort: threading.Event
    error_handler: ErrorHandler
    concurrency: int


class _Worker:
    """Shared plumbing of client and nemesis workers"""

    category = ErrorCategory.CLIENT

    def __init__(self, name: str, process: Process, worker_id: Any, shared: WorkerShared):
        self.name = name
        self.process = process
        self.worker_id = worker_id
        self.shared = shared
        self.last: Optional[Operation] = None
        self.ops_executed = 0

    def run(self) -> int:
        failure: Optional[BaseException] = None
        try:
            self.setup()
        except Exception as e:
            self.report(self.category, ErrorSeverity.MEDIUM, f"setup failed: {e}", e)
        self.shared.barrier.wait(TestPhase.SETUP, self.name)
        try:
            self.loop()
        except (GeneratorError, HistoryInvariantError) as e:
            failure = e
            self.shared.abort.set()
        finally:
            self.finish_active()
            self.shared.barrier.wait(TestPhase.ACTIVE, self.name)
            try:
                self.teardown()
            except Exception as e:
                self.report(self.category, ErrorSeverity.LOW, f"teardown failed: {e}", e)
            self.shared.barrier.wait(TestPhase.TEARDOWN, self.name)
        if failure is not None:
            raise failure
        return self.ops_executed

    def loop(self) -> None:
        shared = self.shared
        while shared.controller.phase == TestPhase.ACTIVE and not shared.abort.is_set():
            context = GeneratorContext(
                process=self.process,
                worker=self.worker_id,
                concurrency=shared.concurrency,
                clock=shared.log.elapsed,
                abort=shared.abort,
                last=self.last
            )
            try:
                op = shared.generator.next(context)
            except GeneratorError as e:
                self.report(ErrorCategory.GENERATOR, ErrorSeverity.FATAL, str(e), e)
                raise
            except Exception as e:
                self.report(ErrorCategory.GENERATOR, ErrorSeverity.FATAL, f"generator raised {e!r}", e)
                raise GeneratorError(f"Generator raised {e!r}") from e

            if op is EXHAUSTED:
                logger.debug(f"{self.name} exhausted its generator")
                break
            if not isinstance(op, Operation) or op.kind != OpKind.INVOKE:
                message = f"generator produced {op!r} for {self.name}"
                self.report(ErrorCategory.GENERATOR, ErrorSeverity.FATAL, message)
                raise GeneratorError(message)
            if op.process != self.process:
                op = op.with_process(self.process)

            try:
                self.last = self.execute(op)
            except HistoryClosedError:
                logger.warning(f"{self.name} found the history frozen; stopping")
                break
            except HistoryInvariantError as e:
                self.report(ErrorCategory.HISTORY_INVARIANT, ErrorSeverity.FATAL, str(e), e)
                raise
            self.ops_executed += 1

    def report(self, category: ErrorCategory, severity: ErrorSeverity, message: str,
               exception: Optional[Exception] = None) -> None:
        self.shared.error_handler.handle_error(ErrorContext(
            category=category,
            severity=severity,
            message=message,
            exception=exception,
            component=self.name,
            phase=self.shared.controller.phase.value
        ))

    def setup(self) -> None:
        pass

    def execute(self, op: Operation) -> Operation:
        raise NotImplementedError

    def finish_active(self) -> None:
        pass

    def teardown(self) -> None:
        pass


class ClientWorker(_Worker):
    """
    Drives one client connection. After an info outcome the operation may
    still be running, so the worker gives up its process identity, moves to
    process + concurrency and opens a fresh connection.
    """

    def __init__(self, index: int, client: IClient, node: str, timeout: float, shared: WorkerShared):
        super().__init__(f"worker-{index}", index, index, shared)
        self.template = client
        self.node = node
        self.timeout = timeout
        self.client: Optional[IClient] = None
        self.finished = threading.Event()

    def setup(self) -> None:
        self.client = self._open()

    def _open(self) -> IClient:
        """A fresh connection, set up before its first operation"""
        client = self.template.open(self.node)
        try:
            client.setup()
        except Exception:
            client.close()
            raise
        return client

    def finish_active(self) -> None:
        self.finished.set()

    def execute(self, op: Operation) -> Operation:
        log = self.shared.log
        log.record(op)
        completion = self._invoke(op)
        log.record(completion)
        if completion.kind == OpKind.INFO:
            self._reincarnate()
        return completion

    def _invoke(self, op: Operation) -> Operation:
        if self.client is None:
            try:
                self.client = call_with_timeout(self._open, self.timeout, self.name)
            except Exception as e:
                # Nothing was sent
                return op.fail(f"could not open client: {e}")
        client = self.client
        try:
            result = call_with_timeout(lambda: client.invoke(op), self.timeout, f"{self.name}:{op.f}")
        except ClientFailure as e:
            return op.fail(str(e))
        except TimeoutError:
            return op.info("timeout")
        except Exception as e:
            return op.info(f"{type(e).__name__}: {e}")

        if not isinstance(result, Operation) or result.f != op.f or result.key != op.key:
            return op.info(f"adapter returned {result!r}")
        if result.kind == OpKind.INVOKE:
            return op.info("adapter returned an invocation")
        return op.complete(result.kind, result.value, result.error)

    def _reincarnate(self) -> None:
        old = self.process
        self.process = old + self.shared.concurrency
        self._close()
        logger.debug(f"{self.name} moved from process {old} to {self.process}")

    def _close(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            logger.debug(f"{self.name} failed to close client: {e}")

    def teardown(self) -> None:
        if self.client is not None:
            try:
                self.client.teardown()
            finally:
                self._close()


class NemesisWorker(_Worker):
    """
    Performs the nemesis operations from the generator and, once its share of
    the active phase is over, heals every fault still in effect, so that the
    final reads see a healed system. Heals are recorded like any other nemesis
    operation; a heal that fails is a warning.
    """

    category = ErrorCategory.NEMESIS

    def __init__(self, nemesis: INemesis, nodes: List[str], timeout: float, shared: WorkerShared):
        super().__init__(NEMESIS, NEMESIS, NEMESIS, shared)
        self.nemesis = nemesis
        self.nodes = nodes
        self.timeout = timeout
        self.healed = False
        self.clients: List[ClientWorker] = []

    def setup(self) -> None:
        self.nemesis.setup(self.nodes)

    def execute(self, op: Operation) -> Operation:
        log = self.shared.log
        log.record(op)
        try:
            completion = call_with_timeout(lambda: self.nemesis.invoke(op), self.timeout, f"nemesis:{op.f}")
            completion = op.complete(completion.kind, completion.value, completion.error)
        except Exception as e:
            self.report(ErrorCategory.NEMESIS, ErrorSeverity.MEDIUM, f"{op.f} failed: {e}", e)
            completion = op.info(f"{type(e).__name__}: {e}")
        else:
            if completion.kind != OpKind.OK:
                self.report(ErrorCategory.NEMESIS, ErrorSeverity.MEDIUM,
                            f"{op.f} did not succeed: {completion.error or completion.kind.value}")
        log.record(completion)
        return completion

    def finish_active(self) -> None:
        self.heal()
        # Keep out of the active barrier until the clients are done, so that its
        # grace period only covers stragglers
        for client in self.clients:
            while not client.finished.wait(0.1):
                if self.shared.controller.phase != TestPhase.ACTIVE:
                    return

    def heal(self) -> None:
        if self.healed:
            return
        self.healed = True
        for op in self.nemesis.heal_ops():
            logger.info(f"Healing: {op.f}")
            # execute() reports a failed heal as a warning
            try:
                self.execute(op)
            except (HistoryClosedError, HistoryInvariantError) as e:
                logger.warning(f"Could not record heal {op.f}: {e}")
                try:
                    self.nemesis.invoke(op)
                except Exception as heal_error:
                    self.report(ErrorCategory.NEMESIS, ErrorSeverity.MEDIUM, f"heal {op.f} failed: {heal_error}")

    def teardown(self) -> None:
        self.nemesis.teardown()


class WorkerPool:
    """Runs `concurrency` client workers plus the nemesis worker"""

    def __init__(
        self,
        client: IClient,
        nemesis: INemesis,
        nodes: List[str],
        shared: WorkerShared,
        client_timeout: float = 5.0,
        nemesis_timeout: float = 60.0
    ):
        if not nodes:
            raise ValueError("WorkerPool needs at least one node")
        self.shared = shared
        self.workers: List[_Worker] = [
            ClientWorker(i, client, nodes[i % len(nodes)], client_timeout, shared)
            for i in range(shared.concurrency)
        ]
        self.nemesis_worker = NemesisWorker(nemesis, nodes, nemesis_timeout, shared)
        self.nemesis_worker.clients = list(self.workers)
        self.workers.append(self.nemesis_worker)
        self.executor: Optional[ThreadPoolExecutor] = None
        self.futures: List[Future] = []

    @property
    def parties(self) -> int:
        return len(self.workers)

    def start(self) -> None:
        self.executor = ThreadPoolExecutor(max_workers=len(self.workers), thread_name_prefix="cfz-worker")
        self.futures = [self.executor.submit(w.run) for w in self.workers]
        logger.info(f"Started {self.shared.concurrency} client workers and the nemesis")

    def join(self, timeout: Optional[float] = None) -> List[BaseException]:
        """Wait for the workers; returns the harness faults they raised"""
        done, not_done = wait(self.futures, timeout=timeout)
        errors = [f.exception() for f in done if f.exception() is not None]
        if not_done:
            logger.error(f"{len(not_done)} workers still running after {timeout}s")
        if self.executor is not None:
            self.executor.shutdown(wait=not not_done)
        return errors

    def ops_executed(self) -> int:
        return sum(w.ops_executed for w in self.workers if isinstance(w, ClientWorker))
