"""
Verdict assembly - picks the checker for a workload and renders the final judgement
"""
import logging
from typing import Iterable, Optional
from ..interfaces import IChecker
from ..models import CheckerConfig, HarnessFault, Verdict
from ..harness.history import History
from .models import get_model
from .linearizable import LinearizableChecker
from .checkers import (
    IndependentChecker,
    SetChecker,
    CounterChecker,
    StatsChecker,
    ComposeChecker,
    history_stats,
    merge_status
)

logger = logging.getLogger(__name__)


def build_checker(workload: str, config: Optional[CheckerConfig] = None) -> IChecker:
    """Default checker for a workload; every workload is checked per key"""
    config = config or CheckerConfig()
    if workload == "set":
        inner: IChecker = SetChecker()
    elif workload == "counter":
        inner = CounterChecker()
    else:
        inner = LinearizableChecker(
            get_model(workload),
            max_configurations=config.max_configurations,
            time_limit=config.time_limit
        )
    return ComposeChecker({
        workload: IndependentChecker(inner),
        "stats": StatsChecker(),
    })


def analyze(
    history: History,
    workload: str,
    config: Optional[CheckerConfig] = None,
    harness_faults: Iterable[HarnessFault] = (),
    checker: Optional[IChecker] = None
) -> Verdict:
    """
    Check an immutable history and produce the verdict. A history that breaks
    the per-process alternation invariant raises HistoryInvariantError: that
    is a harness bug, not a property of the system under test.
    """
    history.validate()
    checker = checker or build_checker(workload, config)
    logger.info(f"Checking {len(history)} events against the {workload} model")
    if isinstance(checker, ComposeChecker):
        results = tuple(checker.check_each(history).values())
    else:
        results = (checker.check(history),)
    verdict = Verdict(
        status=merge_status(r.status for r in results),
        model=workload,
        results=results,
        stats=history_stats(history),
        harness_faults=tuple(harness_faults)
    )
    logger.info(f"Verdict: {verdict.status.value}")
    return verdict
