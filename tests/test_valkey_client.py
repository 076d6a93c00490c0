"""
Tests for the Valkey client adapter and connection helpers, against mocked connections
"""
import pytest
import valkey
from unittest.mock import Mock, MagicMock, patch

from consistency_fuzzer.interfaces import ClientFailure
from consistency_fuzzer.models import OpKind, TestConfig, invoke_op
from consistency_fuzzer.clients import ValkeyClient, ValkeyDatabase
from consistency_fuzzer.utils.valkey_utils import parse_node, wait_for_nodes


def open_client(kind="register"):
    conn = Mock()
    with patch('consistency_fuzzer.clients.valkey_client.connect', return_value=conn) as mock_connect:
        client = ValkeyClient(kind, timeout=2.0).open("10.0.0.1:7000")
    mock_connect.assert_called_once_with("10.0.0.1:7000", 2.0)
    return client, conn


class TestParseNode:
    """Test node address parsing"""

    def test_host_and_port(self):
        assert parse_node("10.0.0.1:7000") == ("10.0.0.1", 7000)

    def test_default_port(self):
        assert parse_node("localhost") == ("localhost", 6379)

    def test_bad_port(self):
        with pytest.raises(ValueError):
            parse_node("localhost:abc")


class TestValkeyClient:
    """Test ValkeyClient operations"""

    def test_open_registers_cas_script(self):
        client, conn = open_client()

        conn.register_script.assert_called_once()
        assert client.node == "10.0.0.1:7000"

    def test_register_read_and_write(self):
        client, conn = open_client()
        conn.get.return_value = "3"

        write = client.invoke(invoke_op(0, 'write', 1, 3))
        read = client.invoke(invoke_op(0, 'read', 1))

        conn.set.assert_called_once_with("cfz:register:1", "3")
        assert write.kind == OpKind.OK
        assert read.value == 3

    def test_read_missing_register(self):
        client, conn = open_client()
        conn.get.return_value = None

        assert client.invoke(invoke_op(0, 'read', 1)).value is None

    def test_cas(self):
        client, conn = open_client()
        script = conn.register_script.return_value
        script.return_value = 1

        assert client.invoke(invoke_op(0, 'cas', 1, (None, 2))).kind == OpKind.OK
        script.assert_called_once_with(keys=["cfz:register:1"], args=["", "2"])

        script.return_value = 0
        with pytest.raises(ClientFailure):
            client.invoke(invoke_op(0, 'cas', 1, (1, 2)))

    def test_set(self):
        client, conn = open_client("set")
        conn.smembers.return_value = {"3", "1", "2"}

        client.invoke(invoke_op(0, 'add', 0, 4))
        read = client.invoke(invoke_op(0, 'read', 0))

        conn.sadd.assert_called_once_with("cfz:set:0", "4")
        assert read.value == (1, 2, 3)

    def test_counter(self):
        client, conn = open_client("counter")
        conn.get.return_value = None

        client.invoke(invoke_op(0, 'add', 0, 5))

        conn.incrby.assert_called_once_with("cfz:counter:0", 5)
        assert client.invoke(invoke_op(0, 'read', 0)).value == 0

    def test_rejected_write_is_definite_failure(self):
        client, conn = open_client()
        conn.set.side_effect = valkey.exceptions.ResponseError("READONLY")

        with pytest.raises(ClientFailure):
            client.invoke(invoke_op(0, 'write', 1, 1))

    def test_connection_error_on_write_propagates(self):
        """The write may have been applied, so the worker must record info"""
        client, conn = open_client()
        conn.set.side_effect = valkey.exceptions.ConnectionError("reset")

        with pytest.raises(valkey.exceptions.ConnectionError):
            client.invoke(invoke_op(0, 'write', 1, 1))

    def test_read_errors_are_definite_failures(self):
        client, conn = open_client()
        conn.get.side_effect = valkey.exceptions.TimeoutError("slow")

        with pytest.raises(ClientFailure):
            client.invoke(invoke_op(0, 'read', 1))

    def test_unsupported_operation(self):
        client, _ = open_client("counter")
        with pytest.raises(ClientFailure):
            client.invoke(invoke_op(0, 'cas', 0, (0, 1)))

    def test_unopened_client(self):
        with pytest.raises(ConnectionError):
            ValkeyClient().invoke(invoke_op(0, 'read', 0))

    def test_close(self):
        client, conn = open_client()

        client.close()
        client.close()

        conn.close.assert_called_once()

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ValkeyClient("queue")


class TestValkeyDatabase:
    """Test the database lifecycle hooks"""

    def test_setup_clears_leftover_keys(self):
        conn = MagicMock()
        conn.scan_iter.return_value = iter(["cfz:register:0", "cfz:register:1"])
        context = MagicMock()
        context.__enter__.return_value = conn
        config = TestConfig(nodes=["10.0.0.1:7000"])

        with patch('consistency_fuzzer.clients.valkey_client.wait_for_nodes', return_value=[]), \
                patch('consistency_fuzzer.clients.valkey_client.valkey_client', return_value=context):
            ValkeyDatabase().setup(config)

        conn.scan_iter.assert_called_once_with(match="cfz:*")
        conn.delete.assert_called_once_with("cfz:register:0", "cfz:register:1")

    def test_setup_fails_when_nodes_unreachable(self):
        with patch('consistency_fuzzer.clients.valkey_client.wait_for_nodes', return_value=["10.0.0.2:7000"]):
            with pytest.raises(ConnectionError):
                ValkeyDatabase().setup(TestConfig(nodes=["10.0.0.2:7000"]))


class TestWaitForNodes:
    """Test wait_for_nodes"""

    @patch('consistency_fuzzer.utils.valkey_utils.is_node_alive')
    def test_all_alive(self, mock_alive):
        mock_alive.return_value = True
        assert wait_for_nodes(["a:1", "b:2"], timeout=1) == []

    @patch('consistency_fuzzer.utils.valkey_utils.time.sleep')
    @patch('consistency_fuzzer.utils.valkey_utils.is_node_alive')
    def test_eventually_alive(self, mock_alive, mock_sleep):
        mock_alive.side_effect = [False, True]
        assert wait_for_nodes(["a:1"], timeout=30, interval=0.1) == []
        mock_sleep.assert_called_once_with(0.1)

    @patch('consistency_fuzzer.utils.valkey_utils.is_node_alive')
    def test_gives_up(self, mock_alive):
        mock_alive.return_value = False
        assert wait_for_nodes(["a:1"], timeout=0, interval=0.01) == ["a:1"]
