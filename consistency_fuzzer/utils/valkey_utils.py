"""
Valkey connection helpers shared by the client adapter and the database hooks
"""
import time
import logging
import valkey
from typing import Iterable, List, Tuple
from contextlib import contextmanager

logger = logging.getLogger(__name__)


def parse_node(node: str, default_port: int = 6379) -> Tuple[str, int]:
    """Split "host:port" (port optional) into its parts"""
    host, sep, port = node.rpartition(':')
    if not sep:
        return node, default_port
    if not port.isdigit():
        raise ValueError(f"Invalid node address '{node}', expected host:port")
    return host, int(port)


def connect(node: str, timeout: float, decode_responses: bool = True) -> valkey.Valkey:
    host, port = parse_node(node)
    return valkey.Valkey(
        host=host,
        port=port,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        decode_responses=decode_responses
    )


@contextmanager
def valkey_client(node: str, timeout: float, decode_responses: bool = True):
    client = None
    try:
        client = connect(node, timeout, decode_responses)
        yield client
    finally:
        if client is not None:
            try:
                client.close()
            except valkey.exceptions.ValkeyError as e:
                logger.debug(f"Error closing connection to {node}: {e}")


def is_node_alive(node: str, timeout: float = 2.0) -> bool:
    try:
        with valkey_client(node, timeout) as client:
            client.ping()
            return True
    except (valkey.exceptions.ConnectionError, valkey.exceptions.TimeoutError):
        return False


def wait_for_nodes(nodes: Iterable[str], timeout: float = 30.0, interval: float = 0.5) -> List[str]:
    """Wait until every node answers PING; returns the nodes still unreachable"""
    pending = list(nodes)
    deadline = time.monotonic() + timeout
    while pending:
        pending = [n for n in pending if not is_node_alive(n)]
        if not pending or time.monotonic() >= deadline:
            break
        time.sleep(interval)
    if pending:
        logger.warning(f"Nodes not reachable: {', '.join(pending)}")
    return pending
