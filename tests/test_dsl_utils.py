"""
Tests for YAML configuration loading and validation
"""
import pytest
import yaml

from consistency_fuzzer.models import TestConfig, NemesisConfig
from consistency_fuzzer.harness.dsl_utils import DSLLoader, DSLValidator


class TestDSLLoader:
    """Test DSLLoader"""

    def test_load_from_string(self):
        """Test loading a full configuration"""
        config = DSLLoader.load_from_string("""
name: partition-test
workload: cas-register
target: memory
nodes: [n1, n2, n3]
concurrency: 4
time_limit: 10
seed: 42
nemesis:
  faults: [partition, kill]
  interval: 2.5
  partition_strategy: isolate-one
checker:
  max_configurations: 1000
""")

        assert config.name == "partition-test"
        assert config.workload == "cas-register"
        assert config.nodes == ["n1", "n2", "n3"]
        assert config.nemesis.faults == ["partition", "kill"]
        assert config.nemesis.interval == 2.5
        assert config.checker.max_configurations == 1000
        assert config.checker.time_limit == 60

    def test_empty_config_uses_defaults(self):
        assert DSLLoader.load_from_string("") == TestConfig()

    def test_invalid_yaml(self):
        with pytest.raises(ValueError, match="Invalid YAML"):
            DSLLoader.load_from_string("nodes: [unclosed")

    def test_config_must_be_a_mapping(self):
        with pytest.raises(ValueError):
            DSLLoader.load_from_string("- just\n- a list\n")

    def test_all_errors_reported_together(self):
        with pytest.raises(ValueError) as excinfo:
            DSLLoader.config_from_dict({'workload': 'queue', 'concurrency': 0})

        message = str(excinfo.value)
        assert "workload" in message
        assert "concurrency" in message

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DSLLoader.load_from_file(tmp_path / "missing.yaml")

    def test_invalid_file_names_the_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("rate: -1\n")

        with pytest.raises(ValueError, match="bad.yaml"):
            DSLLoader.load_from_file(path)

    def test_save_and_reload(self, tmp_path):
        """Test that a saved config reproduces the run configuration"""
        config = TestConfig(
            name="saved",
            nodes=["10.0.0.1:6379", "10.0.0.2:6379"],
            seed=99,
            op_limit=500,
            nemesis=NemesisConfig(faults=["pause"], target_strategy="specific",
                                  specific_nodes=["10.0.0.2:6379"])
        )
        path = tmp_path / "config.yaml"

        DSLLoader.save_config(config, path)

        assert yaml.safe_load(path.read_text())['seed'] == 99
        assert DSLLoader.load_from_file(path) == config


class TestDSLValidator:
    """Test DSLValidator"""

    def test_valid_config(self):
        assert DSLValidator.validate_structure({
            'workload': 'set', 'target': 'valkey', 'nodes': ['a:1'], 'rate': 2.5
        }) == []

    def test_unknown_field(self):
        errors = DSLValidator.validate_structure({'shards': 3})
        assert errors == ["Unknown field: shards"]

    def test_numbers(self):
        errors = DSLValidator.validate_structure({
            'concurrency': True,
            'keys': 0,
            'op_limit': -5,
            'time_limit': 0,
            'final_read_delay': -1,
            'seed': "abc",
        })

        assert len(errors) == 6

    def test_nodes(self):
        assert DSLValidator.validate_structure({'nodes': []})
        assert DSLValidator.validate_structure({'nodes': "n1,n2"})

    def test_nemesis(self):
        errors = DSLValidator.validate_structure({'nemesis': {
            'faults': ['partition', 'flood'],
            'interval': 0,
            'partition_strategy': 'zigzag',
            'target_strategy': 'specific',
            'clock_skew_ms': -3,
            'chaos': True,
        }})

        assert any("flood" in e for e in errors)
        assert any("interval" in e for e in errors)
        assert any("partition_strategy" in e for e in errors)
        assert any("specific_nodes" in e for e in errors)
        assert any("clock_skew_ms" in e for e in errors)
        assert any("chaos" in e for e in errors)

    def test_nemesis_must_be_mapping(self):
        assert DSLValidator.validate_structure({'nemesis': ['partition']}) == ["nemesis: Must be a dictionary"]

    def test_checker(self):
        errors = DSLValidator.validate_structure({'checker': {
            'max_configurations': 0, 'time_limit': -1, 'algorithm': 'wgl'
        }})

        assert len(errors) == 3
