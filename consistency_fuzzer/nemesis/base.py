"""Base classes for Nemesis components"""
import random
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from ..interfaces import INemesis
from ..models import Operation, OpKind, NEMESIS, invoke_op

logger = logging.getLogger(__name__)


class NodeSelector:
    """Utility class for selecting fault targets among the test nodes"""

    STRATEGIES = ("one", "minority", "majority", "all", "specific")

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select(self, nodes: Sequence[str], strategy: str, specific_nodes: Optional[Sequence[str]] = None) -> List[str]:
        """Select target nodes based on selection strategy"""
        nodes = list(nodes)
        if not nodes:
            logger.warning("No nodes available for fault injection")
            return []

        if strategy == "specific":
            selected = [n for n in (specific_nodes or []) if n in nodes]
            if not selected:
                logger.warning(f"None of the specified nodes found: {specific_nodes}")
            return selected

        if strategy == "one":
            selected = [self.rng.choice(nodes)]
        elif strategy == "minority":
            count = max(1, (len(nodes) - 1) // 2)
            selected = self.rng.sample(nodes, count)
        elif strategy == "majority":
            selected = self.rng.sample(nodes, len(nodes) // 2 + 1)
        elif strategy == "all":
            selected = nodes
        else:
            raise ValueError(f"Unknown target selection strategy: {strategy}")

        logger.info(f"Selected {strategy} targets: {', '.join(selected)}")
        return sorted(selected)


class BaseNemesis(INemesis, ABC):
    """
    A nemesis with one fault it can start and stop. Subclasses implement
    _start and _stop; the base tracks whether the fault is in effect so that
    heal_ops() knows what teardown must undo. A _start that applies its fault
    in several steps records each step in self.active as it takes effect, so
    that a start failing half way is still healed.
    """

    start_f = "start"
    stop_f = "stop"

    def __init__(self, seed: Optional[int] = None, target_strategy: str = "one",
                 specific_nodes: Optional[List[str]] = None):
        self.rng = random.Random(seed)
        self.selector = NodeSelector(self.rng)
        self.target_strategy = target_strategy
        self.specific_nodes = specific_nodes
        self.nodes: List[str] = []
        self.active: Optional[Any] = None

    def setup(self, nodes: List[str]) -> None:
        self.nodes = list(nodes)
        logger.info(f"{self.__class__.__name__} ready for {len(self.nodes)} nodes")

    def fs(self) -> Iterable[str]:
        return (self.start_f, self.stop_f)

    def invoke(self, op: Operation) -> Operation:
        if op.f == self.start_f:
            value = self._start(op.value)
            self.active = value
            logger.info(f"{self.start_f}: {value}")
            return op.complete(OpKind.OK, value)
        if op.f == self.stop_f:
            value = self._stop(op.value)
            self.active = None
            logger.info(f"{self.stop_f}: {value}")
            return op.complete(OpKind.OK, value)
        raise ValueError(f"{self.__class__.__name__} does not handle '{op.f}'")

    def heal_ops(self) -> List[Operation]:
        if self.active is None:
            return []
        return [invoke_op(NEMESIS, self.stop_f)]

    def teardown(self) -> None:
        self.active = None

    def targets(self, requested: Any) -> List[str]:
        """Explicit targets from the operation, or a fresh selection"""
        if requested:
            return [requested] if isinstance(requested, str) else list(requested)
        return self.selector.select(self.nodes, self.target_strategy, self.specific_nodes)

    def _apply(self, action: Callable[[str], None], nodes: List[str]) -> List[str]:
        """Run action on each node, adding it to the affected nodes once it succeeded"""
        affected = set(self.active or [])
        for node in nodes:
            action(node)
            affected.add(node)
            self.active = sorted(affected)
        return sorted(affected)

    @abstractmethod
    def _start(self, value: Any) -> Any:
        pass

    @abstractmethod
    def _stop(self, value: Any) -> Any:
        pass


class NoopNemesis(INemesis):
    """Does nothing; used when no faults are scheduled"""

    def setup(self, nodes: List[str]) -> None:
        pass

    def invoke(self, op: Operation) -> Operation:
        return op.complete(OpKind.OK, op.value)

    def heal_ops(self) -> List[Operation]:
        return []

    def teardown(self) -> None:
        pass

    def fs(self) -> Iterable[str]:
        return ()


class ComposedNemesis(INemesis):
    """Routes each operation to the nemesis that handles its f"""

    def __init__(self, nemeses: Sequence[INemesis]):
        self.nemeses = list(nemeses)
        self.routes: Dict[str, INemesis] = {}
        for nemesis in self.nemeses:
            for f in nemesis.fs():
                if f in self.routes:
                    raise ValueError(f"Two nemeses handle '{f}'")
                self.routes[f] = nemesis

    def setup(self, nodes: List[str]) -> None:
        for nemesis in self.nemeses:
            nemesis.setup(nodes)

    def invoke(self, op: Operation) -> Operation:
        nemesis = self.routes.get(op.f)
        if nemesis is None:
            raise ValueError(f"No nemesis handles '{op.f}'")
        return nemesis.invoke(op)

    def heal_ops(self) -> List[Operation]:
        return [op for nemesis in self.nemeses for op in nemesis.heal_ops()]

    def teardown(self) -> None:
        for nemesis in self.nemeses:
            nemesis.teardown()

    def fs(self) -> Iterable[str]:
        return tuple(self.routes)
