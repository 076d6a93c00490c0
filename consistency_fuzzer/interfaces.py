"""
Base interfaces and abstract classes for all major components
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
from .models import Operation, CheckResult, TestConfig


class ClientFailure(Exception):
    """Raised by a client adapter when an operation definitely did not take effect"""


class IClient(ABC):
    """Capability interface for executing operations against the system under test"""

    @abstractmethod
    def open(self, node: str) -> "IClient":
        """Return a client bound to node; the receiver is treated as a template"""
        pass

    @abstractmethod
    def setup(self) -> None:
        """Prepare state (schemas, keys) before the active phase"""
        pass

    @abstractmethod
    def invoke(self, op: Operation) -> Operation:
        """Execute op and return its completion (ok or fail)"""
        pass

    @abstractmethod
    def teardown(self) -> None:
        """Clean up state after the active phase"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release connections"""
        pass


class IDatabase(ABC):
    """Database lifecycle hooks invoked once per run, bracketing the active phase"""

    @abstractmethod
    def setup(self, config: TestConfig) -> None:
        pass

    @abstractmethod
    def teardown(self, config: TestConfig) -> None:
        pass


class INet(ABC):
    """Network control plane used by partition faults"""

    @abstractmethod
    def drop(self, src: str, dst: str) -> None:
        """Drop traffic from src to dst"""
        pass

    @abstractmethod
    def heal(self) -> None:
        """Remove all traffic rules"""
        pass


class IProcessControl(ABC):
    """Process control plane used by crash and pause faults"""

    @abstractmethod
    def kill(self, node: str) -> None:
        pass

    @abstractmethod
    def start(self, node: str) -> None:
        pass

    @abstractmethod
    def pause(self, node: str) -> None:
        pass

    @abstractmethod
    def resume(self, node: str) -> None:
        pass


class IClock(ABC):
    """Clock control plane used by skew faults"""

    @abstractmethod
    def bump(self, node: str, delta_ms: int) -> None:
        pass

    @abstractmethod
    def reset(self, node: str) -> None:
        pass


class INemesis(ABC):
    """Interface for fault injection"""

    @abstractmethod
    def setup(self, nodes: List[str]) -> None:
        pass

    @abstractmethod
    def invoke(self, op: Operation) -> Operation:
        """Perform a control-plane action and return its completion"""
        pass

    @abstractmethod
    def heal_ops(self) -> List[Operation]:
        """Invocations that would heal every fault still active"""
        pass

    @abstractmethod
    def teardown(self) -> None:
        """Release control-plane resources once healed"""
        pass

    @abstractmethod
    def fs(self) -> Iterable[str]:
        """Operation functions this nemesis understands"""
        pass


class IModel(ABC):
    """Sequential specification of a data type"""

    @abstractmethod
    def initial(self) -> Any:
        """Initial (hashable) state"""
        pass

    @abstractmethod
    def step(self, state: Any, op: Operation) -> Tuple[bool, Any]:
        """Apply op to state; return (consistent, next_state)"""
        pass


class IChecker(ABC):
    """Interface for history analysis"""

    @abstractmethod
    def check(self, history, options: Optional[Dict[str, Any]] = None) -> CheckResult:
        """Analyze an immutable history"""
        pass
