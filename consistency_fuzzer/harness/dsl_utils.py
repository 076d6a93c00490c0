"""
DSL Utilities - Load, validate and save YAML test configurations
"""
import yaml
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Union
from ..models import TestConfig, NemesisConfig, CheckerConfig
from ..nemesis import FAULTS, PARTITION_STRATEGIES, NodeSelector

WORKLOADS = ("register", "cas-register", "set", "counter")
TARGETS = ("valkey", "memory", "memory-stale")
TARGET_STRATEGIES = NodeSelector.STRATEGIES


class DSLLoader:
    """Utility class for loading and saving test configurations"""

    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> TestConfig:
        """Load a test configuration from a YAML file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {file_path}")

        with open(file_path, 'r') as f:
            config_text = f.read()
        try:
            return DSLLoader.load_from_string(config_text)
        except ValueError as e:
            raise ValueError(f"Invalid config {file_path}: {e}") from e

    @staticmethod
    def load_from_string(config_text: str) -> TestConfig:
        """Load a test configuration from a YAML string."""
        try:
            config_dict = yaml.safe_load(config_text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML syntax: {e}")
        if not isinstance(config_dict, dict):
            raise ValueError("Config must be a mapping")
        return DSLLoader.config_from_dict(config_dict)

    @staticmethod
    def config_from_dict(config_dict: Dict[str, Any]) -> TestConfig:
        """Build a TestConfig, raising ValueError with every problem found."""
        errors = DSLValidator.validate_structure(config_dict)
        if errors:
            raise ValueError("; ".join(errors))

        values = dict(config_dict)
        nemesis = NemesisConfig(**(values.pop('nemesis', None) or {}))
        checker = CheckerConfig(**(values.pop('checker', None) or {}))
        return TestConfig(nemesis=nemesis, checker=checker, **values)

    @staticmethod
    def config_to_dict(config: TestConfig) -> Dict[str, Any]:
        return asdict(config)

    @staticmethod
    def save_config(config: TestConfig, file_path: Union[str, Path]) -> None:
        """Save a configuration as YAML for reproducibility."""
        file_path = Path(file_path)
        with open(file_path, 'w') as f:
            yaml.dump(DSLLoader.config_to_dict(config), f, default_flow_style=False, sort_keys=False)


class DSLValidator:
    """Validator for test configurations with detailed error reporting"""

    @staticmethod
    def validate_structure(config_dict: dict) -> list:
        errors = []

        known = {f.name for f in fields(TestConfig)}
        for key in config_dict:
            if key not in known:
                errors.append(f"Unknown field: {key}")

        if 'workload' in config_dict and config_dict['workload'] not in WORKLOADS:
            errors.append(f"workload: Must be one of {list(WORKLOADS)}, got {config_dict['workload']!r}")

        if 'target' in config_dict and config_dict['target'] not in TARGETS:
            errors.append(f"target: Must be one of {list(TARGETS)}, got {config_dict['target']!r}")

        if 'nodes' in config_dict:
            nodes = config_dict['nodes']
            if not isinstance(nodes, list) or not nodes or not all(isinstance(n, str) for n in nodes):
                errors.append("nodes: Must be a non-empty list of host:port strings")

        for field in ('concurrency', 'keys'):
            if field in config_dict:
                value = config_dict[field]
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    errors.append(f"{field}: Must be a positive integer")

        if config_dict.get('op_limit') is not None:
            value = config_dict['op_limit']
            if not isinstance(value, int) or value < 1:
                errors.append("op_limit: Must be a positive integer")

        for field in ('time_limit', 'rate', 'client_timeout', 'barrier_grace'):
            if field in config_dict and not _positive(config_dict[field]):
                errors.append(f"{field}: Must be a positive number")

        if 'final_read_delay' in config_dict and not _non_negative(config_dict['final_read_delay']):
            errors.append("final_read_delay: Must be a non-negative number")

        if config_dict.get('seed') is not None and not isinstance(config_dict['seed'], int):
            errors.append("seed: Must be an integer")

        if config_dict.get('nemesis') is not None:
            errors.extend(DSLValidator._validate_nemesis(config_dict['nemesis']))

        if config_dict.get('checker') is not None:
            errors.extend(DSLValidator._validate_checker(config_dict['checker']))

        return errors

    @staticmethod
    def _validate_nemesis(nemesis_dict: dict) -> list:
        errors = []

        if not isinstance(nemesis_dict, dict):
            return ["nemesis: Must be a dictionary"]

        known = {f.name for f in fields(NemesisConfig)}
        for key in nemesis_dict:
            if key not in known:
                errors.append(f"nemesis: Unknown field '{key}'")

        faults = nemesis_dict.get('faults', [])
        if not isinstance(faults, list):
            errors.append("nemesis.faults: Must be a list")
        else:
            for fault in faults:
                if fault not in FAULTS:
                    errors.append(f"nemesis.faults: Invalid fault '{fault}', expected one of {list(FAULTS)}")

        if 'interval' in nemesis_dict and not _positive(nemesis_dict['interval']):
            errors.append("nemesis.interval: Must be a positive number")

        strategy = nemesis_dict.get('partition_strategy')
        if strategy is not None and strategy not in PARTITION_STRATEGIES:
            errors.append(f"nemesis.partition_strategy: Must be one of {list(PARTITION_STRATEGIES)}")

        target = nemesis_dict.get('target_strategy')
        if target is not None and target not in TARGET_STRATEGIES:
            errors.append(f"nemesis.target_strategy: Must be one of {list(TARGET_STRATEGIES)}")
        if target == "specific" and not nemesis_dict.get('specific_nodes'):
            errors.append("nemesis.specific_nodes: Required when target_strategy is 'specific'")

        if 'clock_skew_ms' in nemesis_dict:
            value = nemesis_dict['clock_skew_ms']
            if not isinstance(value, int) or value < 0:
                errors.append("nemesis.clock_skew_ms: Must be a non-negative integer")

        return errors

    @staticmethod
    def _validate_checker(checker_dict: dict) -> list:
        errors = []

        if not isinstance(checker_dict, dict):
            return ["checker: Must be a dictionary"]

        for key in checker_dict:
            if key not in ('max_configurations', 'time_limit'):
                errors.append(f"checker: Unknown field '{key}'")

        if 'max_configurations' in checker_dict:
            value = checker_dict['max_configurations']
            if not isinstance(value, int) or value < 1:
                errors.append("checker.max_configurations: Must be a positive integer")

        if 'time_limit' in checker_dict and not _positive(checker_dict['time_limit']):
            errors.append("checker.time_limit: Must be a positive number")

        return errors


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _non_negative(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0
