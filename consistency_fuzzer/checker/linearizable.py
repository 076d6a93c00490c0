"""
Linearizability Checker - Wing & Gong search with Lowe's memoisation

The history of a single object is laid out as a doubly linked list of call
and return entries in recording order. The search repeatedly tries to
linearize a call that precedes the first pending return; when it reaches a
return whose operation has not been linearized it backtracks. Every
(linearized set, model state) configuration is explored at most once.

Operations that failed are dropped (they definitely had no effect).
Indeterminate (info) operations get a call entry but no return entry, so the
search may linearize them at any point after their invocation, or never.
Indeterminate reads are dropped entirely.

The search is bounded by a number of explored configurations and by wall
clock time; running out of either yields INDETERMINATE, never VALID.
"""
import time
import logging
from typing import Any, Dict, List, Optional
from ..interfaces import IChecker
from ..models import CheckResult, VerdictStatus, OpKind, Operation, thaw_value
from ..harness.history import History, OpPair
from .models import Model

logger = logging.getLogger(__name__)

# Configurations are counted as they enter the memo cache
DEFAULT_MAX_CONFIGURATIONS = 500_000
DEFAULT_TIME_LIMIT = 60.0
_TIME_CHECK_INTERVAL = 1000


class _Entry:
    """A call or return in the search list"""
    __slots__ = ('id', 'pair', 'op', 'is_call', 'match', 'prev', 'next', 'index')

    def __init__(self, index: int, is_call: bool, pair: Optional[OpPair] = None,
                 op: Optional[Operation] = None, op_id: int = -1):
        self.index = index
        self.is_call = is_call
        self.pair = pair
        self.op = op
        self.id = op_id
        self.match: Optional["_Entry"] = None
        self.prev: Optional["_Entry"] = None
        self.next: Optional["_Entry"] = None


def _lift(entry: _Entry) -> None:
    entry.prev.next = entry.next
    if entry.next is not None:
        entry.next.prev = entry.prev
    match = entry.match
    if match is not None:
        match.prev.next = match.next
        if match.next is not None:
            match.next.prev = match.prev


def _unlift(entry: _Entry) -> None:
    match = entry.match
    if match is not None:
        match.prev.next = match
        if match.next is not None:
            match.next.prev = match
    entry.prev.next = entry
    if entry.next is not None:
        entry.next.prev = entry


def _build_entries(pairs: List[OpPair], model: Model):
    """Lay out the search list; returns (head sentinel, number of return entries)"""
    entries: List[_Entry] = []
    op_id = 0
    for pair in pairs:
        if pair.kind == OpKind.FAIL:
            continue
        if pair.kind == OpKind.INFO and model.is_read(pair.f):
            continue
        op = Operation(pair.process, OpKind.OK, pair.f, pair.key, pair.value)
        call = _Entry(pair.start, True, pair, op, op_id)
        entries.append(call)
        if pair.kind == OpKind.OK:
            ret = _Entry(pair.complete.sequence, False, pair, op, op_id)
            call.match = ret
            entries.append(ret)
        op_id += 1

    entries.sort(key=lambda e: e.index)
    head = _Entry(-1, True)
    previous = head
    for entry in entries:
        previous.next = entry
        entry.prev = previous
        previous = entry
    returns = sum(1 for e in entries if not e.is_call)
    return head, returns


def _json_safe(value: Any) -> Any:
    value = thaw_value(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return repr(value)


class LinearizableChecker(IChecker):
    """Checks that a single-object history is linearizable with respect to model"""

    name = "linearizable"

    def __init__(
        self,
        model: Model,
        max_configurations: int = DEFAULT_MAX_CONFIGURATIONS,
        time_limit: float = DEFAULT_TIME_LIMIT
    ):
        self.model = model
        self.max_configurations = max_configurations
        self.time_limit = time_limit

    def check(self, history: History, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        options = options or {}
        pairs = history.client_ops().pairs()
        head, returns = _build_entries(pairs, self.model)
        started = time.monotonic()

        state = self.model.initial()
        linearized = 0
        calls: List[tuple] = []
        cache = set()
        entry = head.next
        iterations = 0
        best_depth = -1
        best = None

        while returns > 0:
            iterations += 1
            if iterations % _TIME_CHECK_INTERVAL == 0 and time.monotonic() - started > self.time_limit:
                return self._indeterminate(f"time limit of {self.time_limit:.1f}s exceeded", len(cache), pairs)

            if entry is None:
                break

            if entry.is_call:
                consistent, new_state = self.model.step(state, entry.op)
                if consistent:
                    new_linearized = linearized | (1 << entry.id)
                    config = (new_linearized, new_state)
                    if config not in cache:
                        if len(cache) >= self.max_configurations:
                            return self._indeterminate(
                                f"explored {self.max_configurations} configurations", len(cache), pairs
                            )
                        cache.add(config)
                        calls.append((entry, state))
                        state = new_state
                        linearized = new_linearized
                        _lift(entry)
                        if entry.match is not None:
                            returns -= 1
                        entry = head.next
                        continue
                entry = entry.next
                continue

            # A return whose operation could not be linearized before it
            if len(calls) > best_depth:
                best_depth = len(calls)
                best = ([c[0].pair for c in calls], state, entry.pair)
            if not calls:
                break
            entry, state = calls.pop()
            linearized &= ~(1 << entry.id)
            _unlift(entry)
            if entry.match is not None:
                returns += 1
            entry = entry.next

        if returns == 0:
            logger.debug(f"Linearized {len(pairs)} operations after {len(cache)} configurations")
            return CheckResult(
                status=VerdictStatus.VALID,
                checker="linearizable",
                details={'model': self.model.name, 'configurations': len(cache), 'operations': len(pairs)}
            )

        if best is None:
            return self._indeterminate("search ended without reaching a return", len(cache), pairs)
        return self._invalid(best, pairs, len(cache), options.get('nemesis'))

    def _indeterminate(self, reason: str, configurations: int, pairs: List[OpPair]) -> CheckResult:
        logger.warning(f"Linearizability search gave up: {reason}")
        return CheckResult(
            status=VerdictStatus.INDETERMINATE,
            checker="linearizable",
            details={
                'model': self.model.name,
                'reason': reason,
                'configurations': configurations,
                'operations': len(pairs),
            }
        )

    def _invalid(self, best, pairs: List[OpPair], configurations: int,
                 nemesis: Optional[History]) -> CheckResult:
        prefix, state, failed = best
        concurrent = [p for p in pairs if p is not failed and p.overlaps(failed) and p.kind != OpKind.FAIL]
        sub_history = sorted(
            [failed.invoke, failed.complete] +
            [e for p in concurrent for e in (p.invoke, p.complete) if e is not None],
            key=lambda e: e.sequence
        )
        details = {
            'model': self.model.name,
            'configurations': configurations,
            'operations': len(pairs),
            'op': _describe(failed),
            'state': _json_safe(state),
            'previous_ok': _describe(prefix[-1]) if prefix else None,
            'linearized_tail': [_describe(p) for p in prefix[-5:]],
            'concurrent': [_describe(p) for p in concurrent],
            'sub_history': [_json_safe_event(e) for e in sub_history],
        }
        if nemesis is not None:
            details['faults'] = _fault_context(nemesis, failed)
        logger.info(
            f"Not linearizable: {failed.f} {failed.value!r} by process {failed.process} "
            f"with {len(concurrent)} concurrent operations"
        )
        return CheckResult(status=VerdictStatus.INVALID, checker="linearizable", details=details)


def _describe(pair: OpPair) -> Dict[str, Any]:
    return {k: _json_safe(v) for k, v in pair.describe().items()}


def _json_safe_event(event) -> Dict[str, Any]:
    return {k: _json_safe(v) for k, v in event.to_dict().items()}


def _fault_context(nemesis: History, failed: OpPair) -> List[Dict[str, Any]]:
    """Nemesis events in effect or occurring while the failed operation was open"""
    end = failed.complete.sequence if failed.complete else float('inf')
    events = list(nemesis)
    before = [e for e in events if e.sequence < failed.start]
    during = [e for e in events if failed.start <= e.sequence <= end]
    relevant = before[-2:] + during
    return [_json_safe_event(e) for e in relevant]
