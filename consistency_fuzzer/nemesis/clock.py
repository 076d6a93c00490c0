"""
Clock faults - skew node clocks forwards or backwards
"""
import time
import logging
from typing import Any, Dict, Iterable, List
from ..interfaces import IClock
from ..models import Operation, OpKind
from .base import BaseNemesis

logger = logging.getLogger(__name__)


class ClockNemesis(BaseNemesis):
    """
    bump-clock shifts the clocks of target nodes by a random offset of at most
    max_skew_ms in either direction. strobe-clock flips a node's clock back and
    forth a few times, leaving it where it started. reset-clock undoes every
    offset.
    """

    start_f = "bump-clock"
    stop_f = "reset-clock"
    strobe_f = "strobe-clock"

    def __init__(self, clock: IClock, max_skew_ms: int = 200, strobe_count: int = 4,
                 strobe_period: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.clock = clock
        self.max_skew_ms = max_skew_ms
        self.strobe_count = strobe_count
        self.strobe_period = strobe_period
        self.offsets: Dict[str, int] = {}

    def fs(self) -> Iterable[str]:
        return (self.start_f, self.strobe_f, self.stop_f)

    def invoke(self, op: Operation) -> Operation:
        if op.f == self.strobe_f:
            value = self._strobe(op.value)
            logger.info(f"{self.strobe_f}: {value}")
            return op.complete(OpKind.OK, value)
        return super().invoke(op)

    def _start(self, value: Any) -> Any:
        for node in self.targets(value):
            delta = self.rng.randint(-self.max_skew_ms, self.max_skew_ms)
            self.clock.bump(node, delta)
            self.offsets[node] = self.offsets.get(node, 0) + delta
            self.active = dict(self.offsets)
        return dict(sorted(self.offsets.items()))

    def _stop(self, value: Any) -> Any:
        reset = sorted(self.offsets)
        for node in reset:
            self.clock.reset(node)
        self.offsets.clear()
        return reset

    def _strobe(self, value: Any) -> List[str]:
        targets = self.targets(value)
        delta = self.max_skew_ms
        for _ in range(self.strobe_count):
            for node in targets:
                self.clock.bump(node, delta)
            time.sleep(self.strobe_period)
            for node in targets:
                self.clock.bump(node, -delta)
            time.sleep(self.strobe_period)
        return targets

    def teardown(self) -> None:
        super().teardown()
        self.offsets.clear()
