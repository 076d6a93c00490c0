"""
Valkey client adapter and database lifecycle hooks
"""
import logging
import valkey
from typing import Any, Optional
from ..interfaces import IClient, IDatabase, ClientFailure
from ..models import Operation, OpKind, TestConfig
from ..utils.valkey_utils import connect, valkey_client, wait_for_nodes

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "cfz"

# KEYS[1] = key, ARGV[1] = expected ("" for absent), ARGV[2] = new value
CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if (current == false and ARGV[1] == '') or current == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2])
    return 1
end
return 0
"""


def _encode(value: Any) -> str:
    return "" if value is None else str(value)


def _decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return raw


class ValkeyClient(IClient):
    """
    Registers map to strings (GET/SET, CAS through a Lua script), sets to
    Valkey sets (SADD/SMEMBERS) and counters to INCRBY. Timeouts and
    connection errors propagate so the worker records them as info; a reply
    error means the command was rejected and becomes a definite failure.
    Reads never change state, so every read error is a definite failure.
    """

    def __init__(self, kind: str = "register", timeout: float = 5.0,
                 key_prefix: str = DEFAULT_KEY_PREFIX, node: Optional[str] = None):
        if kind not in ("register", "set", "counter"):
            raise ValueError(f"Unknown data type {kind}")
        self.kind = kind
        self.timeout = timeout
        self.key_prefix = key_prefix
        self.node = node
        self.conn: Optional[valkey.Valkey] = None
        self._cas = None

    def open(self, node: str) -> "ValkeyClient":
        client = ValkeyClient(self.kind, self.timeout, self.key_prefix, node)
        client.conn = connect(node, self.timeout)
        client._cas = client.conn.register_script(CAS_SCRIPT)
        logger.debug(f"Opened client to {node}")
        return client

    def setup(self) -> None:
        pass

    def key(self, key: Any) -> str:
        return f"{self.key_prefix}:{self.kind}:{key}"

    def invoke(self, op: Operation) -> Operation:
        if self.conn is None:
            raise ConnectionError("Client is not open")
        if op.f == "read":
            return self._read(op)
        try:
            return self._write(op)
        except valkey.exceptions.ResponseError as e:
            raise ClientFailure(str(e)) from e

    def _read(self, op: Operation) -> Operation:
        try:
            if self.kind == "set":
                members = self.conn.smembers(self.key(op.key))
                value = tuple(sorted(_decode(m) for m in members))
            else:
                value = _decode(self.conn.get(self.key(op.key)))
                if self.kind == "counter" and value is None:
                    value = 0
        except valkey.exceptions.ValkeyError as e:
            raise ClientFailure(f"read failed: {e}") from e
        return op.complete(OpKind.OK, value)

    def _write(self, op: Operation) -> Operation:
        key = self.key(op.key)
        if self.kind == "register" and op.f == "write":
            self.conn.set(key, _encode(op.value))
            return op.ok()
        if self.kind == "register" and op.f == "cas":
            expected, new = op.value
            if not self._cas(keys=[key], args=[_encode(expected), _encode(new)]):
                raise ClientFailure(f"expected {expected!r}")
            return op.ok()
        if self.kind == "set" and op.f == "add":
            self.conn.sadd(key, _encode(op.value))
            return op.ok()
        if self.kind == "counter" and op.f == "add":
            self.conn.incrby(key, op.value)
            return op.ok()
        raise ClientFailure(f"Unsupported operation {op.f} for {self.kind}")

    def teardown(self) -> None:
        pass

    def close(self) -> None:
        if self.conn is not None:
            try:
                self.conn.close()
            except valkey.exceptions.ValkeyError as e:
                logger.debug(f"Error closing client to {self.node}: {e}")
            self.conn = None


class ValkeyDatabase(IDatabase):
    """Waits for every node to answer and clears keys left over from earlier runs"""

    def __init__(self, key_prefix: str = DEFAULT_KEY_PREFIX, timeout: float = 5.0):
        self.key_prefix = key_prefix
        self.timeout = timeout

    def setup(self, config: TestConfig) -> None:
        unreachable = wait_for_nodes(config.nodes, timeout=self.timeout)
        if unreachable:
            raise ConnectionError(f"Nodes not reachable: {', '.join(unreachable)}")
        for node in config.nodes:
            removed = self.flush(node)
            logger.info(f"Cleared {removed} keys on {node}")

    def teardown(self, config: TestConfig) -> None:
        pass

    def flush(self, node: str) -> int:
        with valkey_client(node, self.timeout) as client:
            keys = list(client.scan_iter(match=f"{self.key_prefix}:*"))
            if keys:
                client.delete(*keys)
            return len(keys)
