"""
Main entry point for the Consistency Fuzzer
"""
import random
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from .interfaces import IClient, IDatabase, INet, IProcessControl, IClock
from .models import TestConfig, ExecutionResult, HarnessFault, Verdict
from .checker import analyze
from .clients import SimulatedCluster, MemoryClient, ValkeyClient, ValkeyDatabase
from .harness.store import RunStore
from .harness.test_runner import TestRunner
from .nemesis import build_nemesis
from .workloads import build_generator

logger = logging.getLogger(__name__)

DATA_TYPES = {
    "register": "register",
    "cas-register": "register",
    "set": "set",
    "counter": "counter",
}


@dataclass
class Target:
    """Client, database hooks and control-plane capabilities for one run"""
    client: IClient
    database: IDatabase
    net: Optional[INet] = None
    control: Optional[IProcessControl] = None
    clock: Optional[IClock] = None


class ConsistencyFuzzer:
    """Main orchestrator for the Consistency Fuzzer system"""

    def __init__(self, store_dir: Optional[str] = None, process_control: Optional[IProcessControl] = None):
        """
        store_dir overrides the store directory of every config run through
        this fuzzer. process_control enables kill and pause faults against a
        real Valkey deployment.
        """
        self.store_dir = store_dir
        self.process_control = process_control

    @property
    def store(self) -> RunStore:
        return RunStore(self.store_dir or TestConfig.store_dir)

    def build_target(self, config: TestConfig) -> Target:
        """
        Wire up the system under test named by config.target.
        """
        kind = DATA_TYPES[config.workload]
        if config.target in ("memory", "memory-stale"):
            cluster = SimulatedCluster(
                config.nodes,
                stale_reads=config.target == "memory-stale",
                pause_timeout=config.client_timeout * 2
            )
            return Target(
                client=MemoryClient(cluster, kind),
                database=cluster,
                net=cluster,
                control=cluster,
                clock=cluster
            )
        if config.target == "valkey":
            return Target(
                client=ValkeyClient(kind, timeout=config.client_timeout),
                database=ValkeyDatabase(timeout=config.client_timeout),
                control=self.process_control
            )
        raise ValueError(f"Unknown target '{config.target}'")

    def create_runner(self, config: TestConfig) -> TestRunner:
        """
        Build the runner for a config. A config without a seed gets one so
        that the run can be reproduced.
        """
        if config.seed is None:
            config = replace(config, seed=random.randint(0, 2**31 - 1))
        target = self.build_target(config)
        nemesis = build_nemesis(config.nemesis, target.net, target.control, target.clock, seed=config.seed)
        return TestRunner(
            config,
            client=target.client,
            generator=build_generator(config),
            nemesis=nemesis,
            database=target.database,
            store=RunStore(self.store_dir or config.store_dir)
        )

    def run_test(self, config: TestConfig) -> ExecutionResult:
        """
        Run one test and return its result.
        """
        return self.create_runner(config).run()

    def analyze_run(self, run: Union[str, Path], save: bool = False) -> Verdict:
        """
        Re-check a stored run without executing anything. Harness faults from
        the stored verdict are carried over to the new one.
        """
        store = self.store
        run_dir = store.resolve(run)
        history = store.load_history(run_dir)
        config = store.load_config(run_dir) or TestConfig()
        stored = store.load_verdict(run_dir) or {}
        faults = [HarnessFault(**fault) for fault in stored.get('harness_faults', [])]

        logger.info(f"Re-checking {run_dir} ({len(history)} events)")
        verdict = analyze(history, config.workload, config.checker, faults)
        if save:
            store.save_verdict(run_dir, verdict)
        return verdict

    def list_runs(self, test_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Stored runs, newest first.
        """
        return self.store.list_runs(test_name)
