"""
Client Adapters - Execute operations against the system under test

Components:
- SimulatedCluster / MemoryClient: in-process store with controllable faults
- ValkeyClient / ValkeyDatabase: Valkey adapter and lifecycle hooks
- NoopDatabase: lifecycle hooks for targets managed elsewhere
"""
import logging
from ..interfaces import IDatabase
from ..models import TestConfig
from .memory import SimulatedCluster, MemoryClient
from .valkey_client import ValkeyClient, ValkeyDatabase

logger = logging.getLogger(__name__)


class NoopDatabase(IDatabase):
    """The database is provisioned and cleaned up outside the harness"""

    def setup(self, config: TestConfig) -> None:
        logger.debug(f"No database setup for {config.name}")

    def teardown(self, config: TestConfig) -> None:
        pass


__all__ = [
    'SimulatedCluster',
    'MemoryClient',
    'ValkeyClient',
    'ValkeyDatabase',
    'NoopDatabase',
]
