#!/usr/bin/env python3
"""
Command-line interface for the Consistency Fuzzer
Provides commands for running tests, re-checking stored runs, browsing prior
results and validating test configurations.
"""
import sys
import json
import yaml
import signal
import argparse
import traceback
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from .main import ConsistencyFuzzer
from .models import TestConfig, ExecutionResult, Verdict, VerdictStatus
from .harness.dsl_utils import DSLLoader
from .harness.run_logger import RunLogger
from .workloads import build_generator

CONFIG_FLAGS = (
    'name',
    'workload',
    'target',
    'concurrency',
    'time_limit',
    'op_limit',
    'rate',
    'keys',
    'client_timeout',
    'barrier_grace',
    'seed',
)


class FuzzerCLI:
    """Command-line interface for the Consistency Fuzzer"""

    def __init__(self, store_dir: Optional[str] = None):
        self.fuzzer = ConsistencyFuzzer(store_dir=store_dir)

    def build_config(self, args) -> TestConfig:
        """Config file (if any) overridden by the flags given on the command line"""
        if args.config:
            config_dict = yaml.safe_load(Path(args.config).read_text()) or {}
            if not isinstance(config_dict, dict):
                raise ValueError(f"{args.config}: config must be a mapping")
        else:
            config_dict = {}

        for flag in CONFIG_FLAGS:
            value = getattr(args, flag, None)
            if value is not None:
                config_dict[flag] = value

        if args.nodes:
            config_dict['nodes'] = [n.strip() for n in args.nodes.split(',') if n.strip()]

        nemesis = dict(config_dict.get('nemesis') or {})
        if args.nemesis is not None:
            nemesis['faults'] = [f.strip() for f in args.nemesis.split(',') if f.strip()]
        if args.nemesis_interval is not None:
            nemesis['interval'] = args.nemesis_interval
        if args.partition_strategy is not None:
            nemesis['partition_strategy'] = args.partition_strategy
        if nemesis:
            config_dict['nemesis'] = nemesis

        return DSLLoader.config_from_dict(config_dict)

    def run_test(self, args) -> int:
        """Execute one test run"""
        try:
            config = self.build_config(args)
        except (OSError, ValueError, yaml.YAMLError) as e:
            print(f"Error: Invalid test configuration: {e}")
            print(f"\nTry validating your config file first: consistency-fuzzer validate <file.yaml>")
            return 1

        self._print_header(f"Test: {config.name}")
        print(f"Workload: {config.workload} on {config.target} ({', '.join(config.nodes)})")
        print(f"Workers: {config.concurrency} | Time limit: {config.time_limit}s | "
              f"Faults: {', '.join(config.nemesis.faults) or 'none'}")
        print()

        try:
            runner = self.fuzzer.create_runner(config)
        except ValueError as e:
            print(f"Error: {e}")
            return 1

        def interrupt(signum, frame):
            print("\nInterrupted: finishing in-flight operations and checking the history")
            runner.abort()

        previous = signal.signal(signal.SIGINT, interrupt)
        try:
            result = runner.run()
        finally:
            signal.signal(signal.SIGINT, previous)

        print(RunLogger(result.run_dir).generate_report([result]))
        if args.verbose:
            self._print_detailed_result(result)

        if args.output:
            self._save_results(result, args.output, args.format)

        return 0 if result.verdict is not None and result.verdict.valid else 1

    def analyze_run(self, args) -> int:
        """Re-check a stored run"""
        self._print_header(f"Analyze: {args.run}")
        try:
            verdict = self.fuzzer.analyze_run(args.run, save=args.save)
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: Could not analyze run: {e}")
            print(f"\nList stored runs with: consistency-fuzzer serve")
            return 1

        self._print_verdict(verdict, args.verbose)
        if args.save:
            print("\nVerdict saved")
        return 0 if verdict.valid else 1

    def serve(self, args) -> int:
        """List prior results from the store"""
        runs = self.fuzzer.list_runs(args.test)
        self._print_header(f"Stored runs in {self.fuzzer.store.base_dir}")
        if not runs:
            print("No stored runs")
            return 0

        if args.limit:
            runs = runs[:args.limit]
        print(f"{'STATUS':<14} {'TEST':<24} {'RUN':<24} FAULTS")
        for run in runs:
            print(f"{run['status']:<14} {run['test']:<24} {run['run_id']:<24} {run['harness_faults']}")
        return 0

    def validate_config(self, args) -> int:
        """Validate a YAML test configuration"""
        self._print_header(f"Validating config: {args.file}")

        config_path = Path(args.file)
        if not config_path.exists():
            print(f"Error: Config file not found: {args.file}")
            print(f"\nMake sure the file path is correct.")
            print(f"Example: consistency-fuzzer validate examples/register_partition.yaml")
            return 1

        try:
            config = DSLLoader.load_from_file(config_path)
            print("Config loaded successfully")
            build_generator(config)
            print("Generator built successfully")
        except (ValueError, TypeError) as e:
            print(f"\nError: Validation failed: {e}")
            if args.verbose:
                traceback.print_exc()
            return 1

        print("\n" + "=" * 60)
        print("Test Summary")
        print("=" * 60)
        print(f"Name: {config.name}")
        print(f"Workload: {config.workload} over {config.keys} keys")
        print(f"Target: {config.target} ({len(config.nodes)} nodes)")
        print(f"Workers: {config.concurrency} at {config.rate} ops/s each")
        print(f"Time limit: {config.time_limit}s" + (f", op limit: {config.op_limit}" if config.op_limit else ""))
        print(f"Faults: {', '.join(config.nemesis.faults) or 'none'} every {config.nemesis.interval}s")
        if config.seed is not None:
            print(f"Seed: {config.seed}")

        print("\nConfig is valid!")
        return 0

    def _print_header(self, title: str):
        """Print formatted header"""
        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

    def _print_verdict(self, verdict: Verdict, verbose: bool = False):
        print(f"Verdict: {verdict.status.value.upper()} ({verdict.model})")
        stats = verdict.stats
        print(f"ok: {stats.get('ok_count', 0)} | fail: {stats.get('fail_count', 0)} | "
              f"info: {stats.get('info_count', 0)}")
        for result in verdict.results:
            print(f"  {result.checker}: {result.status.value}")
            if verbose and result.status != VerdictStatus.VALID:
                print(json.dumps(result.details, indent=2, default=str))
        for fault in verdict.harness_faults:
            print(f"Harness fault [{fault.category}]: {fault.message}")

    def _print_detailed_result(self, result: ExecutionResult):
        """Print checker details when --verbose flag is specified"""
        if result.verdict is None:
            return
        print()
        self._print_verdict(result.verdict, verbose=True)

    def _save_results(self, result: ExecutionResult, output_path: str, format: str):
        """Save test result to file"""
        try:
            output = Path(output_path)
            output.parent.mkdir(parents=True, exist_ok=True)
            data = self._result_to_dict(result)
            with open(output, 'w') as f:
                if format == 'json':
                    json.dump(data, f, indent=2, default=str)
                elif format == 'yaml':
                    yaml.dump(data, f, default_flow_style=False)
            print(f"\nResults saved to {output_path}")
        except OSError as e:
            print(f"\nFailed to save results: {e}")

    def _result_to_dict(self, result: ExecutionResult) -> Dict[str, Any]:
        return {
            'test_name': result.test_name,
            'run_id': result.run_id,
            'success': result.success,
            'duration': result.end_time - result.start_time,
            'events_recorded': result.events_recorded,
            'seed': result.seed,
            'run_dir': result.run_dir,
            'error_message': result.error_message,
            'verdict': result.verdict.to_dict() if result.verdict else None,
            'harness_faults': [f.to_dict() for f in result.harness_faults],
            'harness_warnings': [w.to_dict() for w in result.warnings],
        }


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='consistency-fuzzer',
        description='Consistency Fuzzer - Check a data store against a consistency model under faults',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a register test against the in-process simulated cluster
  consistency-fuzzer test --target memory --nodes n1,n2,n3 --time-limit 10

  # Run against Valkey with a config file, overriding the seed
  consistency-fuzzer test --config examples/register_partition.yaml --seed 42

  # Re-check a stored run
  consistency-fuzzer analyze register/20260101T120000-a1b2c3

  # Browse prior results
  consistency-fuzzer serve

  # Validate a config file
  consistency-fuzzer validate examples/register_partition.yaml
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Consistency Fuzzer 0.1.0'
    )
    parser.add_argument(
        '--store',
        type=str,
        help='Store directory for run artifacts (default: from config)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    test_parser = subparsers.add_parser('test', help='Run a test')
    test_parser.add_argument('--config', type=str, help='Path to YAML test config')
    test_parser.add_argument('--name', type=str, help='Test name (store directory)')
    test_parser.add_argument('--workload', choices=['register', 'cas-register', 'set', 'counter'],
                             help='Workload (default: register)')
    test_parser.add_argument('--target', choices=['valkey', 'memory', 'memory-stale'],
                             help='System under test (default: valkey)')
    test_parser.add_argument('--nodes', type=str, help='Comma-separated host:port list')
    test_parser.add_argument('--concurrency', type=int, help='Number of client workers')
    test_parser.add_argument('--time-limit', type=float, help='Seconds of client operations')
    test_parser.add_argument('--op-limit', type=int, help='Maximum number of client operations')
    test_parser.add_argument('--rate', type=float, help='Operations per second, per worker')
    test_parser.add_argument('--keys', type=int, help='Number of independent keys')
    test_parser.add_argument('--client-timeout', type=float, help='Seconds before a call is recorded as info')
    test_parser.add_argument('--barrier-grace', type=float, help='Phase barrier grace period in seconds')
    test_parser.add_argument('--nemesis', type=str, help='Comma-separated faults: partition,kill,pause,clock')
    test_parser.add_argument('--nemesis-interval', type=float, help='Seconds between nemesis actions')
    test_parser.add_argument('--partition-strategy', type=str, help='Partition grudge strategy')
    test_parser.add_argument('--seed', type=int, help='Seed for reproducibility')
    test_parser.add_argument('--output', type=str, help='Path to save the test result')
    test_parser.add_argument('--format', choices=['json', 'yaml'], default='json',
                             help='Output format for results (default: json)')
    test_parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    analyze_parser = subparsers.add_parser('analyze', help='Re-check a stored run')
    analyze_parser.add_argument('run', help='Run directory, or <test>/<run id> in the store')
    analyze_parser.add_argument('--save', action='store_true', help='Overwrite the stored verdict')
    analyze_parser.add_argument('--verbose', action='store_true', help='Print counterexamples')

    serve_parser = subparsers.add_parser('serve', help='Browse prior results')
    serve_parser.add_argument('--test', type=str, help='Only runs of this test')
    serve_parser.add_argument('--limit', type=int, help='Show at most this many runs')

    validate_parser = subparsers.add_parser('validate', help='Validate a YAML test config')
    validate_parser.add_argument('file', help='Path to YAML test config')
    validate_parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    return parser


def main(argv=None):
    """Main entry point for CLI"""

    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()]
    )

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        print("Error: No command specified\n")
        parser.print_help()
        print("\nCommon commands:")
        print("  consistency-fuzzer test --target memory      # Run against the simulated cluster")
        print("  consistency-fuzzer serve                     # List stored runs")
        print("  consistency-fuzzer validate <file.yaml>      # Validate a config file")
        return 1

    cli = FuzzerCLI(store_dir=args.store)

    try:
        if args.command == 'test':
            return cli.run_test(args)
        elif args.command == 'analyze':
            return cli.analyze_run(args)
        elif args.command == 'serve':
            return cli.serve(args)
        elif args.command == 'validate':
            return cli.validate_config(args)
    except KeyboardInterrupt:
        print("\n\nConsistency Fuzzer process was interrupted by user")
        return 130
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        if getattr(args, 'verbose', False):
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
