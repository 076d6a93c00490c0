"""
In-process simulated cluster and client adapter

SimulatedCluster plays both the system under test and its control plane:
it stores data, answers the partition, process and clock capabilities and
the database lifecycle hooks. In its default mode every operation needs the
contacted node to see a majority, and all nodes share one authoritative
copy of the data, so histories are linearizable. With stale_reads=True every
node keeps its own replica, writes only reach the nodes the contacted node
can see, and reads are served locally, which is the classic way to lose
writes under a partition.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from ..interfaces import IClient, IDatabase, INet, IProcessControl, IClock, ClientFailure
from ..models import Operation, OpKind, TestConfig

logger = logging.getLogger(__name__)

Mutation = Callable[[Any], Tuple[Any, Any]]


class SimulatedCluster(INet, IProcessControl, IClock, IDatabase):
    """A toy replicated key-value store with controllable faults"""

    def __init__(self, nodes: List[str], stale_reads: bool = False, pause_timeout: float = 30.0):
        if not nodes:
            raise ValueError("SimulatedCluster needs at least one node")
        self.nodes = list(nodes)
        self.stale_reads = stale_reads
        self.pause_timeout = pause_timeout
        self.data: Dict[Any, Any] = {}
        self.replicas: Dict[str, Dict[Any, Any]] = {n: {} for n in self.nodes}
        self.dropped: Set[Tuple[str, str]] = set()
        self.down: Set[str] = set()
        self.clock_offsets: Dict[str, int] = {}
        self._running: Dict[str, threading.Event] = {}
        for node in self.nodes:
            self._running[node] = threading.Event()
            self._running[node].set()
        self._lock = threading.Lock()

    # Database lifecycle

    def setup(self, config: TestConfig) -> None:
        with self._lock:
            self.data.clear()
            for replica in self.replicas.values():
                replica.clear()
        logger.info(f"Simulated cluster ready with {len(self.nodes)} nodes")

    def teardown(self, config: TestConfig) -> None:
        self.heal()
        for node in self.nodes:
            self.resume(node)
        with self._lock:
            self.down.clear()

    # Network

    def drop(self, src: str, dst: str) -> None:
        with self._lock:
            self.dropped.add((src, dst))

    def heal(self) -> None:
        with self._lock:
            self.dropped.clear()

    def reachable(self, node: str) -> List[str]:
        """Nodes that node can exchange traffic with in both directions, itself included"""
        with self._lock:
            return self._reachable(node)

    def _reachable(self, node: str) -> List[str]:
        return [
            n for n in self.nodes
            if n == node or (
                n not in self.down
                and (node, n) not in self.dropped
                and (n, node) not in self.dropped
            )
        ]

    # Processes

    def kill(self, node: str) -> None:
        with self._lock:
            self.down.add(node)
            if self.stale_reads:
                # Unreplicated state is lost with the process
                self.replicas[node] = {}

    def start(self, node: str) -> None:
        with self._lock:
            self.down.discard(node)
            if self.stale_reads:
                peers = [n for n in self._reachable(node) if n != node]
                if peers:
                    self.replicas[node] = dict(self.replicas[peers[0]])

    def pause(self, node: str) -> None:
        self._running[node].clear()

    def resume(self, node: str) -> None:
        self._running[node].set()

    # Clocks

    def bump(self, node: str, delta_ms: int) -> None:
        with self._lock:
            self.clock_offsets[node] = self.clock_offsets.get(node, 0) + delta_ms

    def reset(self, node: str) -> None:
        with self._lock:
            self.clock_offsets.pop(node, None)

    # Data path

    def apply(self, node: str, key: Any, mutation: Mutation, write: bool = True) -> Any:
        """
        Run mutation(current) -> (new_value, result) against the data node
        sees for key. Raises ConnectionError for a dead node, TimeoutError
        when the node stays paused, ClientFailure when a quorum is missing.
        """
        if node not in self.replicas:
            raise ClientFailure(f"Unknown node {node}")
        if not self._running[node].wait(self.pause_timeout):
            raise TimeoutError(f"{node} is paused")

        with self._lock:
            if node in self.down:
                raise ConnectionError(f"{node} is down")
            visible = self._reachable(node)

            if not self.stale_reads:
                if len(visible) < len(self.nodes) // 2 + 1:
                    raise ClientFailure(f"{node} cannot reach a majority")
                new_value, result = mutation(self.data.get(key))
                if write:
                    self.data[key] = new_value
                return result

            new_value, result = mutation(self.replicas[node].get(key))
            if write:
                for peer in visible:
                    self.replicas[peer][key] = new_value
            return result


def _read(current: Any) -> Tuple[Any, Any]:
    return current, current


class MemoryClient(IClient):
    """
    Client for a SimulatedCluster. kind selects the data type behind a key:
    "register" (read/write/cas), "set" (add/read) or "counter" (add/read).
    """

    def __init__(self, cluster: SimulatedCluster, kind: str = "register", node: Optional[str] = None):
        if kind not in ("register", "set", "counter"):
            raise ValueError(f"Unknown data type {kind}")
        self.cluster = cluster
        self.kind = kind
        self.node = node

    def open(self, node: str) -> "MemoryClient":
        return MemoryClient(self.cluster, self.kind, node)

    def setup(self) -> None:
        pass

    def invoke(self, op: Operation) -> Operation:
        if self.node is None:
            raise ConnectionError("Client is not open")

        if op.f == "read":
            value = self.cluster.apply(self.node, op.key, _read, write=False)
            return op.complete(OpKind.OK, self._read_value(value))

        if op.f == "write" and self.kind == "register":
            self.cluster.apply(self.node, op.key, lambda current: (op.value, op.value))
            return op.ok()

        if op.f == "cas" and self.kind == "register":
            expected, new = op.value

            def cas(current):
                if current != expected:
                    raise ClientFailure(f"expected {expected!r}, found {current!r}")
                return new, op.value

            self.cluster.apply(self.node, op.key, cas)
            return op.ok()

        if op.f == "add" and self.kind == "set":
            self.cluster.apply(self.node, op.key, lambda current: ((current or frozenset()) | {op.value}, None))
            return op.ok()

        if op.f == "add" and self.kind == "counter":
            self.cluster.apply(self.node, op.key, lambda current: ((current or 0) + op.value, None))
            return op.ok()

        raise ClientFailure(f"Unsupported operation {op.f} for {self.kind}")

    def _read_value(self, value: Any) -> Any:
        if self.kind == "set":
            return tuple(sorted(value or ()))
        if self.kind == "counter":
            return value or 0
        return value

    def teardown(self) -> None:
        pass

    def close(self) -> None:
        self.node = None
