"""
Process faults - crash/restart and pause/resume of database processes
"""
import os
import signal
import logging
from typing import Any, Callable, Dict, List, Optional
from ..interfaces import IProcessControl
from .base import BaseNemesis

logger = logging.getLogger(__name__)


class LocalProcessControl(IProcessControl):
    """
    Signals locally running database processes. Restarting is delegated to a
    callback owned by whoever launched the process, which returns the new pid.
    """

    def __init__(self, restart: Optional[Callable[[str], int]] = None):
        self.restart = restart
        self.node_processes: Dict[str, int] = {}  # node -> process_id mapping

    def register_node_process(self, node: str, process_id: int) -> None:
        """Register a process ID for a node"""
        self.node_processes[node] = process_id
        logger.debug(f"Registered process {process_id} for node {node}")

    def unregister_node_process(self, node: str) -> None:
        if node in self.node_processes:
            del self.node_processes[node]
            logger.debug(f"Unregistered process for node {node}")

    def kill(self, node: str) -> None:
        self._signal(node, signal.SIGKILL)

    def pause(self, node: str) -> None:
        self._signal(node, signal.SIGSTOP)

    def resume(self, node: str) -> None:
        self._signal(node, signal.SIGCONT)

    def start(self, node: str) -> None:
        if self.restart is None:
            raise RuntimeError(f"No restart hook configured; cannot start {node}")
        pid = self.restart(node)
        self.register_node_process(node, pid)
        logger.info(f"Restarted {node} with PID {pid}")

    def _signal(self, node: str, sig: signal.Signals) -> None:
        process_id = self.node_processes.get(node)
        if process_id is None:
            raise KeyError(f"No process registered for node {node}")
        try:
            os.kill(process_id, sig)
            logger.info(f"Sent {sig.name} to {node} (PID: {process_id})")
        except ProcessLookupError:
            logger.info(f"Process {process_id} already dead (fault goal achieved)")


class KillNemesis(BaseNemesis):
    """Kills target nodes on kill, restarts every killed node on restart"""

    start_f = "kill"
    stop_f = "restart"

    def __init__(self, control: IProcessControl, **kwargs):
        super().__init__(**kwargs)
        self.control = control

    def _start(self, value: Any) -> Any:
        # Nodes killed by an earlier kill without a restart stay down
        return self._apply(self.control.kill, self.targets(value))

    def _stop(self, value: Any) -> Any:
        restarted: List[str] = []
        for node in (self.active or []):
            self.control.start(node)
            restarted.append(node)
        return restarted


class PauseNemesis(BaseNemesis):
    """Freezes target nodes with SIGSTOP and thaws them with SIGCONT"""

    start_f = "pause"
    stop_f = "resume"

    def __init__(self, control: IProcessControl, **kwargs):
        super().__init__(**kwargs)
        self.control = control

    def _start(self, value: Any) -> Any:
        return self._apply(self.control.pause, self.targets(value))

    def _stop(self, value: Any) -> Any:
        resumed: List[str] = []
        for node in (self.active or []):
            self.control.resume(node)
            resumed.append(node)
        return resumed
