"""
Tests for the history log and immutable histories
"""
import threading
import pytest

from consistency_fuzzer.models import Event, NEMESIS, OpKind, Operation, TestPhase, invoke_op
from consistency_fuzzer.harness.barrier import PhaseController
from consistency_fuzzer.harness.history import (
    History, HistoryLog, HistoryInvariantError, HistoryClosedError, HistoryPhaseError
)


def event(sequence, process, kind, f, key=None, value=None):
    return Event(sequence, float(sequence), Operation(process, kind, f, key, value))


class TestHistoryLog:
    """Test HistoryLog"""

    def test_record_assigns_sequence_and_timestamp(self):
        log = HistoryLog()
        op = invoke_op(0, 'write', 0, 1)

        first = log.record(op)
        second = log.record(op.ok())

        assert (first.sequence, second.sequence) == (0, 1)
        assert first.timestamp <= second.timestamp
        assert len(log) == 2

    def test_invoke_twice_violates_alternation(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'write', 0, 1))

        with pytest.raises(HistoryInvariantError):
            log.record(invoke_op(0, 'read', 0))

    def test_completion_without_invocation(self):
        log = HistoryLog()

        with pytest.raises(HistoryInvariantError):
            log.record(invoke_op(0, 'read', 0).ok(1))

    def test_completion_must_match_invocation(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'write', 0, 1))

        with pytest.raises(HistoryInvariantError):
            log.record(invoke_op(0, 'read', 0).ok(1))

    def test_outstanding(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'write', 0, 1))
        log.record(invoke_op(1, 'read', 0))
        log.record(invoke_op(1, 'read', 0).ok(None))

        assert [op.process for op in log.outstanding()] == [0]

    def test_close_outstanding(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'write', 0, 1))
        log.record(invoke_op(1, 'read', 0))

        closed = log.close_outstanding("aborted")

        assert [e.op.process for e in closed] == [0, 1]
        assert all(e.op.kind == OpKind.INFO and e.op.error == "aborted" for e in closed)
        assert log.outstanding() == []
        assert log.close_outstanding("again") == []

    def test_snapshot_closes_outstanding_as_info(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'write', 0, 1))

        history = log.snapshot(close_reason="run ended")

        assert len(history) == 2
        assert history[-1].kind == OpKind.INFO
        assert history[-1].op.error == "run ended"
        assert history[-1].value == 1

    def test_snapshot_is_frozen_and_idempotent(self):
        log = HistoryLog()
        log.record(invoke_op(0, 'read', 0))
        log.record(invoke_op(0, 'read', 0).ok(None))

        first = log.snapshot()
        second = log.snapshot(close_reason="ignored after freezing")

        assert log.frozen
        assert first == second
        with pytest.raises(HistoryClosedError):
            log.record(invoke_op(0, 'read', 0))
        assert log.snapshot() == first

    def test_concurrent_recording_keeps_invariants(self):
        log = HistoryLog()

        def worker(process):
            for i in range(100):
                op = invoke_op(process, 'write', i % 3, i)
                log.record(op)
                log.record(op.ok())

        threads = [threading.Thread(target=worker, args=(p,)) for p in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        history = log.snapshot()
        assert len(history) == 8 * 100 * 2
        assert [e.sequence for e in history] == list(range(len(history)))
        history.validate()

        for process in range(8):
            mine = [e for e in history if e.process == process]
            kinds = [e.kind for e in mine]
            assert kinds[::2] == [OpKind.INVOKE] * 100
            assert all(k == OpKind.OK for k in kinds[1::2])
            timestamps = [e.timestamp for e in mine]
            assert timestamps == sorted(timestamps)

    def test_snapshot_waits_for_analyzing_phase(self):
        controller = PhaseController()
        log = HistoryLog(controller=controller)
        log.record(invoke_op(0, 'read', 'k'))

        controller.advance(TestPhase.TEARDOWN)
        with pytest.raises(HistoryPhaseError):
            log.snapshot(close_reason="run ended")
        assert not log.frozen
        log.record(invoke_op(0, 'read', 'k').ok(1))

        controller.advance(TestPhase.ANALYZING)
        history = log.snapshot()
        assert [e.kind for e in history] == [OpKind.INVOKE, OpKind.OK]


class TestHistory:
    """Test History views"""

    def make_history(self):
        return History([
            event(0, 0, OpKind.INVOKE, 'write', 'a', 1),
            event(1, NEMESIS, OpKind.INVOKE, 'start-partition'),
            event(2, 1, OpKind.INVOKE, 'read', 'b'),
            event(3, 0, OpKind.OK, 'write', 'a', 1),
            event(4, NEMESIS, OpKind.OK, 'start-partition'),
            event(5, 1, OpKind.INFO, 'read', 'b'),
            event(6, 2, OpKind.INVOKE, 'read', 'a'),
        ])

    def test_pairs(self):
        pairs = self.make_history().client_ops().pairs()

        assert [(p.process, p.kind) for p in pairs] == [
            (0, OpKind.OK), (1, OpKind.INFO), (2, OpKind.INFO)
        ]
        assert pairs[0].end == 3
        assert pairs[1].end is None
        assert pairs[2].complete is None

    def test_overlaps(self):
        write, info_read, open_read = self.make_history().client_ops().pairs()

        assert write.overlaps(info_read)
        assert info_read.overlaps(open_read)
        assert not write.overlaps(open_read)

    def test_client_and_nemesis_ops(self):
        history = self.make_history()

        assert len(history.nemesis_ops()) == 2
        assert len(history.client_ops()) == 5
        assert history.count(OpKind.INVOKE) == 4

    def test_by_key(self):
        by_key = self.make_history().by_key()

        assert list(by_key) == ['a', 'b']
        assert len(by_key['a']) == 3
        assert len(by_key['b']) == 2

    def test_slicing_returns_history(self):
        history = self.make_history()
        assert isinstance(history[:2], History)
        assert len(history[:2]) == 2

    def test_validate_accepts_open_invocations(self):
        self.make_history().validate()

    def test_validate_rejects_broken_alternation(self):
        history = History([
            event(0, 0, OpKind.INVOKE, 'read', 'a'),
            event(1, 0, OpKind.INVOKE, 'read', 'a'),
        ])

        with pytest.raises(HistoryInvariantError):
            history.validate()

    def test_validate_rejects_out_of_order_sequences(self):
        history = History([
            event(1, 0, OpKind.INVOKE, 'read', 'a'),
            event(0, 0, OpKind.OK, 'read', 'a'),
        ])

        with pytest.raises(HistoryInvariantError):
            history.validate()

    def test_event_dict_round_trip(self):
        original = event(4, 2, OpKind.OK, 'cas', 'k', (1, 2))
        restored = Event.from_dict(original.to_dict())

        assert restored == original
        assert original.to_dict()['value'] == [1, 2]
