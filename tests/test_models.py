"""
Tests for core data models
"""
import pytest
from dataclasses import FrozenInstanceError

from consistency_fuzzer.models import (
    CheckResult, ExecutionResult, HarnessFault, NEMESIS, OpKind, Operation, TestConfig,
    TestPhase, Verdict, VerdictStatus, freeze_value, invoke_op, thaw_value
)


def test_operation_values_are_frozen():
    """Test that list values become hashable tuples"""
    op = invoke_op(0, 'cas', ['k', 1], [1, [2, 3]])

    assert op.value == (1, (2, 3))
    assert op.key == ('k', 1)
    assert hash(op.value)


def test_operation_is_immutable():
    op = invoke_op(0, 'read', 'k')
    with pytest.raises(FrozenInstanceError):
        op.value = 3


def test_completions_keep_the_invocation():
    """Test building completions from an invocation"""
    op = invoke_op(2, 'write', 'k', 5)

    assert op.ok() == Operation(2, OpKind.OK, 'write', 'k', 5)
    assert op.ok(6).value == 6
    assert op.fail("no quorum").error == "no quorum"
    assert op.info("timeout").kind == OpKind.INFO
    assert op.with_process(5).process == 5
    assert op.action == {'f': 'write', 'key': 'k', 'value': 5}


def test_nemesis_operation():
    assert invoke_op(NEMESIS, 'kill').is_nemesis
    assert not invoke_op(0, 'read').is_nemesis


def test_thaw_value():
    assert thaw_value((1, (2, 3))) == [1, [2, 3]]
    assert thaw_value(frozenset({3, 1})) == [1, 3]
    assert freeze_value({1, 2}) == frozenset({1, 2})


def test_phases_only_move_forward():
    assert TestPhase.SETUP.next_phase() == TestPhase.ACTIVE
    assert TestPhase.TEARDOWN.next_phase() == TestPhase.ANALYZING
    assert TestPhase.DONE.next_phase() == TestPhase.DONE


def test_test_config_defaults():
    """Test default test configuration"""
    config = TestConfig()

    assert config.workload == "register"
    assert config.target == "valkey"
    assert config.concurrency == 5
    assert config.nemesis.faults == []
    assert config.checker.max_configurations == 500_000
    assert config.seed is None


def test_verdict_counterexamples():
    verdict = Verdict(
        status=VerdictStatus.INVALID,
        model="register",
        results=(
            CheckResult(VerdictStatus.INVALID, "linearizable", {'op': {'f': 'read'}}),
            CheckResult(VerdictStatus.VALID, "stats"),
        )
    )

    assert not verdict.valid
    assert verdict.counterexamples == [{'op': {'f': 'read'}}]
    assert verdict.to_dict()['results'][1] == {'checker': 'stats', 'status': 'valid', 'details': {}}


def test_execution_result_success_requires_clean_run():
    """A valid verdict with harness faults is not a clean success"""
    verdict = Verdict(status=VerdictStatus.VALID, model="register")
    result = ExecutionResult("t", "r", 0.0, 1.0, verdict)

    assert result.success
    result.harness_faults.append(HarnessFault("broken_barrier", "late"))
    assert not result.success
    assert result.verdict.valid
