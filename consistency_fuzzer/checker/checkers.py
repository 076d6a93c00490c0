"""
History checkers beyond linearizability, and the combinators that tie them together
"""
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional
from ..interfaces import IChecker
from ..models import CheckResult, VerdictStatus, OpKind
from ..harness.history import History

logger = logging.getLogger(__name__)

_SEVERITY = {
    VerdictStatus.VALID: 0,
    VerdictStatus.INDETERMINATE: 1,
    VerdictStatus.INVALID: 2,
}


def merge_status(statuses: Iterable[VerdictStatus]) -> VerdictStatus:
    """Invalid beats indeterminate beats valid"""
    merged = VerdictStatus.VALID
    for status in statuses:
        if _SEVERITY[status] > _SEVERITY[merged]:
            merged = status
    return merged


class IndependentChecker(IChecker):
    """
    Splits a history by key and checks every key with the inner checker.
    Only sound for models where keys do not interact.
    """

    def __init__(self, inner: IChecker):
        self.inner = inner

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        options = dict(options or {})
        options.setdefault('nemesis', history.nemesis_ops())
        per_key = history.by_key()
        statuses: Dict[str, str] = {}
        failures: List[Dict[str, Any]] = []
        indeterminate: List[Dict[str, Any]] = []
        results = []

        for key, sub_history in per_key.items():
            result = self.inner.check(sub_history, options)
            results.append(result.status)
            statuses[str(key)] = result.status.value
            if result.status == VerdictStatus.INVALID:
                failures.append({'key': str(key), **result.details})
            elif result.status == VerdictStatus.INDETERMINATE:
                indeterminate.append({'key': str(key), **result.details})

        status = merge_status(results)
        logger.info(f"Checked {len(per_key)} keys: {status.value}")
        return CheckResult(
            status=status,
            checker=f"independent({getattr(self.inner, 'name', self.inner.__class__.__name__)})",
            details={'keys': statuses, 'failures': failures, 'indeterminate': indeterminate}
        )


class SetChecker(IChecker):
    """
    Grow-only set: every acknowledged add must be present in the final read,
    and the final read may only contain elements whose add was attempted and
    did not definitely fail.
    """

    name = "set"

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        attempts = set()
        acknowledged = set()
        failed = set()
        final_read = None

        for pair in history.client_ops().pairs():
            if pair.f == "add":
                attempts.add(pair.invoke.value)
                if pair.kind == OpKind.OK:
                    acknowledged.add(pair.invoke.value)
                elif pair.kind == OpKind.FAIL:
                    failed.add(pair.invoke.value)
            elif pair.f == "read" and pair.kind == OpKind.OK:
                final_read = pair

        if final_read is None:
            return CheckResult(
                status=VerdictStatus.INDETERMINATE,
                checker="set",
                details={'reason': "no successful read to compare against", 'attempt_count': len(attempts)}
            )

        final = set(final_read.value or ())
        lost = acknowledged - final
        unexpected = final - (attempts - failed)
        recovered = final & (attempts - acknowledged - failed)
        valid = not lost and not unexpected

        return CheckResult(
            status=VerdictStatus.VALID if valid else VerdictStatus.INVALID,
            checker="set",
            details={
                'attempt_count': len(attempts),
                'acknowledged_count': len(acknowledged),
                'ok_count': len(final & acknowledged),
                'lost': sorted(lost, key=repr),
                'unexpected': sorted(unexpected, key=repr),
                'recovered': sorted(recovered, key=repr),
                'final_read_index': final_read.start,
            }
        )


class CounterChecker(IChecker):
    """
    Counter with non-negative increments: every read must fall between the
    sum of increments acknowledged before the read began and the sum of
    increments attempted (and not definitely failed) by the time it ended.
    """

    name = "counter"

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        lower = 0
        upper = 0
        pending_reads: Dict[Any, int] = {}
        errors = []
        reads = 0

        for event in history.client_ops():
            op = event.op
            if op.f == "add":
                if op.kind == OpKind.INVOKE:
                    upper += op.value
                elif op.kind == OpKind.OK:
                    lower += op.value
                elif op.kind == OpKind.FAIL:
                    upper -= op.value
            elif op.f == "read":
                if op.kind == OpKind.INVOKE:
                    pending_reads[op.process] = lower
                elif op.kind == OpKind.OK:
                    reads += 1
                    read_lower = pending_reads.pop(op.process, lower)
                    if op.value is None or not (read_lower <= op.value <= upper):
                        errors.append({
                            'process': op.process,
                            'value': op.value,
                            'expected_range': [read_lower, upper],
                            'index': event.sequence,
                        })
                else:
                    pending_reads.pop(op.process, None)

        return CheckResult(
            status=VerdictStatus.INVALID if errors else VerdictStatus.VALID,
            checker="counter",
            details={'reads': reads, 'errors': errors, 'final_bounds': [lower, upper]}
        )


def history_stats(history: History) -> Dict[str, Any]:
    """Counts of ok/fail/info completions overall and per operation function"""
    by_f: Dict[str, Counter] = {}
    totals = Counter()
    for event in history.client_ops():
        if event.kind == OpKind.INVOKE:
            continue
        totals[event.kind.value] += 1
        by_f.setdefault(event.f, Counter())[event.kind.value] += 1
    nemesis = history.nemesis_ops()
    return {
        'ok_count': totals['ok'],
        'fail_count': totals['fail'],
        'info_count': totals['info'],
        'by_f': {f: dict(c) for f, c in sorted(by_f.items())},
        'nemesis_events': len(nemesis),
        'events': len(history),
    }


class StatsChecker(IChecker):
    """Operation statistics; informational, always valid"""

    name = "stats"

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        return CheckResult(status=VerdictStatus.VALID, checker="stats", details=history_stats(history))


class ComposeChecker(IChecker):
    """Runs several checkers over the same history and merges their statuses"""

    name = "compose"

    def __init__(self, checkers: Dict[str, IChecker]):
        self.checkers = dict(checkers)

    def check_each(self, history: History, options: Optional[Dict[str, Any]] = None) -> Dict[str, CheckResult]:
        return {name: checker.check(history, options) for name, checker in self.checkers.items()}

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        results = self.check_each(history, options)
        return CheckResult(
            status=merge_status(r.status for r in results.values()),
            checker="compose",
            details={
                name: {'checker': r.checker, 'status': r.status.value, 'details': r.details}
                for name, r in results.items()
            }
        )
