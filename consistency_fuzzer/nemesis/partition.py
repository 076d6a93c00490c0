"""
Network partitions - grudges describe, for every node, the nodes whose
traffic it drops
"""
import random
import logging
from typing import Any, Dict, List, Optional, Sequence, Set
from ..interfaces import INet
from .base import BaseNemesis

logger = logging.getLogger(__name__)

Grudge = Dict[str, Set[str]]


def complete_grudge(components: Sequence[Sequence[str]]) -> Grudge:
    """Every node drops traffic from every node outside its own component"""
    universe = {n for component in components for n in component}
    grudge: Grudge = {}
    for component in components:
        others = universe - set(component)
        for node in component:
            grudge[node] = set(others)
    return grudge


def random_halves(nodes: Sequence[str], rng: random.Random) -> Grudge:
    """Cut the cluster into a minority and a majority"""
    shuffled = list(nodes)
    rng.shuffle(shuffled)
    cut = len(shuffled) // 2
    return complete_grudge([shuffled[:cut], shuffled[cut:]])


def isolate_one(nodes: Sequence[str], rng: random.Random) -> Grudge:
    node = rng.choice(list(nodes))
    return complete_grudge([[node], [n for n in nodes if n != node]])


def bridge(nodes: Sequence[str], rng: random.Random) -> Grudge:
    """Two halves that only share a single bridge node"""
    shuffled = list(nodes)
    rng.shuffle(shuffled)
    if len(shuffled) < 3:
        return random_halves(shuffled, rng)
    middle = len(shuffled) // 2
    left, bridge_node, right = shuffled[:middle], shuffled[middle], shuffled[middle + 1:]
    grudge = complete_grudge([left, right])
    grudge[bridge_node] = set()
    return grudge


def majorities_ring(nodes: Sequence[str], rng: random.Random) -> Grudge:
    """Each node sees a majority, but no two nodes see the same majority"""
    ring = list(nodes)
    rng.shuffle(ring)
    n = len(ring)
    majority = n // 2 + 1
    universe = set(ring)
    grudge: Grudge = {}
    for i, node in enumerate(ring):
        visible = {ring[(i + d) % n] for d in range(-((majority - 1) // 2), majority // 2 + 1)}
        grudge[node] = universe - visible
    return grudge


PARTITION_STRATEGIES = {
    "random-halves": random_halves,
    "isolate-one": isolate_one,
    "bridge": bridge,
    "majorities-ring": majorities_ring,
}


class PartitionNemesis(BaseNemesis):
    """Partitions the network on start-partition, heals it on stop-partition"""

    start_f = "start-partition"
    stop_f = "stop-partition"

    def __init__(self, net: INet, strategy: str = "random-halves", seed: Optional[int] = None):
        super().__init__(seed=seed)
        if strategy not in PARTITION_STRATEGIES:
            raise ValueError(f"Unknown partition strategy '{strategy}', expected one of {sorted(PARTITION_STRATEGIES)}")
        self.net = net
        self.strategy = strategy

    def _start(self, value: Any) -> Any:
        if isinstance(value, dict):
            grudge = {dst: set(srcs) for dst, srcs in value.items()}
        else:
            grudge = PARTITION_STRATEGIES[self.strategy](self.nodes, self.rng)
        applied: Grudge = {}
        for dst, srcs in grudge.items():
            for src in srcs:
                self.net.drop(src, dst)
                applied.setdefault(dst, set()).add(src)
                self.active = applied
        logger.info(f"Partitioned into {components(grudge)}")
        return {dst: sorted(srcs) for dst, srcs in sorted(grudge.items())}

    def _stop(self, value: Any) -> Any:
        self.net.heal()
        return "fully connected"


def components(grudge: Grudge) -> List[List[str]]:
    """Group nodes that hold identical grudges, for logging and reports"""
    groups: Dict[frozenset, List[str]] = {}
    for node, srcs in grudge.items():
        groups.setdefault(frozenset(srcs), []).append(node)
    return sorted(sorted(g) for g in groups.values())
