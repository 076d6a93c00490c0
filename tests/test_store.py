"""
Tests for the run store
"""
import json
import pytest

from consistency_fuzzer.models import (
    CheckResult, Event, NEMESIS, OpKind, Operation, TestConfig, Verdict, VerdictStatus
)
from consistency_fuzzer.harness.history import History
from consistency_fuzzer.harness.store import RunStore


def sample_history():
    return History([
        Event(0, 0.1, Operation(0, OpKind.INVOKE, 'cas', 'k', (1, 2))),
        Event(1, 0.2, Operation(NEMESIS, OpKind.INVOKE, 'start-partition')),
        Event(2, 0.3, Operation(0, OpKind.FAIL, 'cas', 'k', (1, 2), error="mismatch")),
        Event(3, 0.4, Operation(NEMESIS, OpKind.OK, 'start-partition', value={'n1': ['n2']})),
    ])


def sample_verdict(status=VerdictStatus.VALID):
    return Verdict(
        status=status,
        model="register",
        results=(CheckResult(status, "register"),),
        stats={'events': 4}
    )


class TestRunStore:
    """Test RunStore"""

    def test_new_run_layout(self, tmp_path):
        store = RunStore(tmp_path)

        run_dir = store.new_run("register")

        assert run_dir.is_dir()
        assert run_dir.parent == tmp_path / "register"

    def test_history_round_trip(self, tmp_path):
        store = RunStore(tmp_path)
        run_dir = store.new_run("register")

        path = store.save_history(run_dir, sample_history())

        assert len(path.read_text().splitlines()) == 4
        loaded = store.load_history(run_dir)
        assert loaded == sample_history()
        assert loaded[2].op.error == "mismatch"

    def test_malformed_history_line(self, tmp_path):
        store = RunStore(tmp_path)
        run_dir = store.new_run("register")
        (run_dir / "history.jsonl").write_text('{"sequence": 0}\n')

        with pytest.raises(ValueError, match="history.jsonl:1"):
            store.load_history(run_dir)

    def test_missing_history(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RunStore(tmp_path).load_history(tmp_path)

    def test_verdict_and_config(self, tmp_path):
        store = RunStore(tmp_path)
        run_dir = store.new_run("register")
        config = TestConfig(name="register", seed=3)

        store.save_verdict(run_dir, sample_verdict())
        store.save_config(run_dir, config)

        assert store.load_verdict(run_dir)['status'] == "valid"
        assert json.loads((run_dir / "verdict.json").read_text())['model'] == "register"
        assert store.load_config(run_dir) == config

    def test_missing_verdict_and_config(self, tmp_path):
        store = RunStore(tmp_path)
        run_dir = store.new_run("register")

        assert store.load_verdict(run_dir) is None
        assert store.load_config(run_dir) is None

    def test_resolve(self, tmp_path):
        store = RunStore(tmp_path)
        run_dir = store.new_run("register")
        store.save_history(run_dir, sample_history())

        assert store.resolve(run_dir) == run_dir
        assert store.resolve(f"register/{run_dir.name}") == run_dir
        with pytest.raises(FileNotFoundError):
            store.resolve("register/nope")

    def test_list_runs(self, tmp_path):
        store = RunStore(tmp_path)
        first = store.new_run("register")
        store.save_history(first, sample_history())
        store.save_verdict(first, sample_verdict(VerdictStatus.INVALID))
        second = store.new_run("counter")
        store.save_history(second, sample_history())
        store.new_run("set")

        runs = store.list_runs()

        assert {r['test'] for r in runs} == {"register", "counter"}
        by_test = {r['test']: r for r in runs}
        assert by_test['register']['status'] == "invalid"
        assert by_test['counter']['status'] == "unknown"
        assert [r['test'] for r in store.list_runs("counter")] == ["counter"]

    def test_list_runs_without_store(self, tmp_path):
        assert RunStore(tmp_path / "nothing").list_runs() == []
