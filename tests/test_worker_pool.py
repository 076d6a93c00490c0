"""
Tests for client workers, the nemesis worker and the worker pool
"""
import threading
import time
import pytest
from unittest.mock import Mock

from consistency_fuzzer.interfaces import IClient, INemesis, ClientFailure
from consistency_fuzzer.models import NEMESIS, OpKind, TestPhase, invoke_op
from consistency_fuzzer.clients import SimulatedCluster, MemoryClient
from consistency_fuzzer.harness.barrier import PhaseBarrier, PhaseController
from consistency_fuzzer.harness.error_handler import ErrorHandler
from consistency_fuzzer.harness.generator import (
    GeneratorError, clients_nemesis, each_process, from_fn, once, seq, sleep, then
)
from consistency_fuzzer.harness.history import HistoryLog
from consistency_fuzzer.harness.worker_pool import (
    ClientWorker, NemesisWorker, WorkerPool, WorkerShared, call_with_timeout
)


def make_shared(generator=None, concurrency=3, grace=5.0):
    controller = PhaseController()
    handler = ErrorHandler()
    barrier = PhaseBarrier(concurrency + 1, controller, grace, on_fault=handler.record_fault)
    return WorkerShared(
        generator=generator,
        log=HistoryLog(),
        controller=controller,
        barrier=barrier,
        abort=threading.Event(),
        error_handler=handler,
        concurrency=concurrency
    )


def idle_nemesis():
    nemesis = Mock(spec=INemesis)
    nemesis.heal_ops.return_value = []
    return nemesis


def make_worker(connection, timeout=1.0, shared=None):
    template = Mock(spec=IClient)
    template.open.return_value = connection
    worker = ClientWorker(0, template, "n1", timeout, shared or make_shared())
    worker.setup()
    return worker, template


class TestCallWithTimeout:
    """Test call_with_timeout"""

    def test_returns_result(self):
        assert call_with_timeout(lambda: 42, 1.0) == 42

    def test_reraises_errors(self):
        def boom():
            raise ClientFailure("no")

        with pytest.raises(ClientFailure):
            call_with_timeout(boom, 1.0)

    def test_times_out(self):
        with pytest.raises(TimeoutError):
            call_with_timeout(lambda: time.sleep(0.5), 0.05)

    def test_no_timeout_calls_directly(self):
        assert call_with_timeout(lambda: threading.current_thread(), None) is threading.current_thread()


class TestClientWorker:
    """Test how a client worker turns adapter outcomes into completions"""

    def test_ok(self):
        connection = Mock(spec=IClient)
        connection.invoke.side_effect = lambda op: op.ok(7)
        worker, _ = make_worker(connection)

        completion = worker.execute(invoke_op(0, 'read', 'k'))

        assert completion.kind == OpKind.OK
        assert completion.value == 7
        assert [e.kind for e in worker.shared.log.snapshot()] == [OpKind.INVOKE, OpKind.OK]
        assert worker.process == 0

    def test_client_failure_is_fail(self):
        connection = Mock(spec=IClient)
        connection.invoke.side_effect = ClientFailure("no quorum")
        worker, _ = make_worker(connection)

        completion = worker.execute(invoke_op(0, 'write', 'k', 1))

        assert completion.kind == OpKind.FAIL
        assert completion.error == "no quorum"
        assert worker.process == 0
        connection.close.assert_not_called()

    def test_unexpected_error_is_info_and_reincarnates(self):
        connection = Mock(spec=IClient)
        connection.invoke.side_effect = ConnectionError("reset by peer")
        worker, template = make_worker(connection)

        completion = worker.execute(invoke_op(0, 'write', 'k', 1))

        assert completion.kind == OpKind.INFO
        assert "reset by peer" in completion.error
        assert worker.process == 3
        assert worker.client is None
        connection.close.assert_called_once()

        connection.invoke.side_effect = lambda op: op.ok(None)
        assert worker.execute(invoke_op(3, 'read', 'k')).kind == OpKind.OK
        assert template.open.call_count == 2

    def test_timeout_is_info(self):
        connection = Mock(spec=IClient)
        connection.invoke.side_effect = lambda op: time.sleep(0.5)
        worker, _ = make_worker(connection, timeout=0.05)

        completion = worker.execute(invoke_op(0, 'write', 'k', 1))

        assert completion.kind == OpKind.INFO
        assert completion.error == "timeout"
        assert worker.process == 3

    def test_malformed_adapter_result_is_info(self):
        connection = Mock(spec=IClient)
        connection.invoke.return_value = "garbage"
        worker, _ = make_worker(connection)

        assert worker.execute(invoke_op(0, 'read', 'k')).kind == OpKind.INFO

    def test_open_failure_is_fail(self):
        template = Mock(spec=IClient)
        template.open.side_effect = ConnectionError("refused")
        worker = ClientWorker(0, template, "n1", 1.0, make_shared())

        completion = worker.execute(invoke_op(0, 'read', 'k'))

        assert completion.kind == OpKind.FAIL
        assert "could not open client" in completion.error

    def test_reopened_client_is_set_up(self):
        first, second = Mock(spec=IClient), Mock(spec=IClient)
        first.invoke.side_effect = ConnectionError("reset by peer")
        second.invoke.side_effect = lambda op: op.ok(None)
        template = Mock(spec=IClient)
        template.open.side_effect = [first, second]
        worker = ClientWorker(0, template, "n1", 1.0, make_shared())
        worker.setup()

        worker.execute(invoke_op(0, 'write', 'k', 1))
        second.setup.assert_not_called()
        completion = worker.execute(invoke_op(3, 'read', 'k'))

        assert completion.kind == OpKind.OK
        first.setup.assert_called_once()
        second.setup.assert_called_once()

    def test_reopen_with_failing_setup_is_fail(self):
        first, second = Mock(spec=IClient), Mock(spec=IClient)
        first.invoke.side_effect = ConnectionError("reset by peer")
        second.setup.side_effect = ConnectionError("refused")
        template = Mock(spec=IClient)
        template.open.side_effect = [first, second]
        worker = ClientWorker(0, template, "n1", 1.0, make_shared())
        worker.setup()
        worker.execute(invoke_op(0, 'write', 'k', 1))

        completion = worker.execute(invoke_op(3, 'read', 'k'))

        assert completion.kind == OpKind.FAIL
        assert "could not open client" in completion.error
        second.invoke.assert_not_called()
        second.close.assert_called_once()
        assert worker.client is None

    def test_teardown_closes_client(self):
        connection = Mock(spec=IClient)
        worker, _ = make_worker(connection)

        worker.teardown()

        connection.teardown.assert_called_once()
        connection.close.assert_called_once()
        assert worker.client is None


class TestNemesisWorker:
    """Test the nemesis worker"""

    def test_heals_once(self):
        nemesis = Mock(spec=INemesis)
        nemesis.heal_ops.return_value = [invoke_op(NEMESIS, 'stop-partition')]
        nemesis.invoke.side_effect = lambda op: op.ok("healed")
        worker = NemesisWorker(nemesis, ["n1"], 1.0, make_shared())

        worker.finish_active()
        worker.finish_active()

        nemesis.invoke.assert_called_once()
        events = worker.shared.log.snapshot()
        assert [(e.process, e.kind) for e in events] == [(NEMESIS, OpKind.INVOKE), (NEMESIS, OpKind.OK)]

    def test_failed_fault_is_info_and_warning(self):
        nemesis = Mock(spec=INemesis)
        nemesis.invoke.side_effect = RuntimeError("iptables missing")
        worker = NemesisWorker(nemesis, ["n1"], 1.0, make_shared())

        completion = worker.execute(invoke_op(NEMESIS, 'start-partition'))

        assert completion.kind == OpKind.INFO
        handler = worker.shared.error_handler
        assert handler.harness_faults() == []
        assert handler.warnings()[0].category == "nemesis"

    def test_unsuccessful_completion_is_warning(self):
        nemesis = Mock(spec=INemesis)
        nemesis.invoke.side_effect = lambda op: op.info("node unreachable")
        worker = NemesisWorker(nemesis, ["n1"], 1.0, make_shared())

        completion = worker.execute(invoke_op(NEMESIS, 'kill'))

        assert completion.kind == OpKind.INFO
        warnings = worker.shared.error_handler.warnings()
        assert len(warnings) == 1
        assert warnings[0].message == "kill did not succeed: node unreachable"

    def test_failed_heal_is_warning(self):
        nemesis = Mock(spec=INemesis)
        nemesis.heal_ops.return_value = [invoke_op(NEMESIS, 'stop-partition')]
        nemesis.invoke.side_effect = RuntimeError("iptables missing")
        worker = NemesisWorker(nemesis, ["n1"], 1.0, make_shared())

        worker.finish_active()

        events = worker.shared.log.snapshot()
        assert [(e.f, e.kind) for e in events] == [('stop-partition', OpKind.INVOKE), ('stop-partition', OpKind.INFO)]
        warnings = worker.shared.error_handler.warnings()
        assert len(warnings) == 1
        assert warnings[0].message == "stop-partition failed: iptables missing"
        assert warnings[0].participant == NEMESIS


class TestWorkerPool:
    """Test complete runs of the pool through the phase barriers"""

    def test_runs_every_worker_to_completion(self):
        def script():
            return seq([{'f': 'write', 'key': 0, 'value': 1}, {'f': 'read', 'key': 0}])

        shared = make_shared(clients_nemesis(each_process(script), None), concurrency=2)
        cluster = SimulatedCluster(["n1", "n2"])
        pool = WorkerPool(MemoryClient(cluster), idle_nemesis(), cluster.nodes, shared)

        assert pool.parties == 3
        pool.start()
        errors = pool.join(timeout=10)

        assert errors == []
        assert pool.ops_executed() == 4
        assert shared.controller.phase == TestPhase.ANALYZING
        history = shared.log.snapshot()
        history.validate()
        assert len(history) == 8
        assert all(e.kind in (OpKind.INVOKE, OpKind.OK) for e in history)

    def test_idle_nemesis_does_not_break_active_barrier(self):
        def script():
            return then(sleep(0.6), once({'f': 'read', 'key': 0}))

        shared = make_shared(clients_nemesis(each_process(script), None), concurrency=2, grace=0.3)
        cluster = SimulatedCluster(["n1"])
        pool = WorkerPool(MemoryClient(cluster), idle_nemesis(), cluster.nodes, shared)

        pool.start()
        errors = pool.join(timeout=10)

        assert errors == []
        assert not shared.barrier.is_broken(TestPhase.ACTIVE)
        assert shared.error_handler.harness_faults() == []
        assert pool.ops_executed() == 2

    def test_generator_malfunction_aborts_run(self):
        shared = make_shared(clients_nemesis(from_fn(lambda context: 42), None), concurrency=2)
        cluster = SimulatedCluster(["n1"])
        pool = WorkerPool(MemoryClient(cluster), idle_nemesis(), cluster.nodes, shared)

        pool.start()
        errors = pool.join(timeout=10)

        # The second worker may see the abort flag before it ever pulls an operation
        assert 1 <= len(errors) <= 2
        assert all(isinstance(e, GeneratorError) for e in errors)
        assert shared.abort.is_set()
        faults = shared.error_handler.harness_faults()
        assert faults and all(f.category == "generator" for f in faults)
        assert len(shared.log) == 0

    def test_needs_nodes(self):
        with pytest.raises(ValueError):
            WorkerPool(Mock(spec=IClient), Mock(spec=INemesis), [], make_shared())
