#!/usr/bin/env python3
"""
Example script demonstrating how to use the Consistency Fuzzer
"""
import sys
import argparse

from consistency_fuzzer.main import ConsistencyFuzzer
from consistency_fuzzer.harness.dsl_utils import DSLLoader
from consistency_fuzzer.models import NemesisConfig, TestConfig


def print_result(result):
    print("\n" + "=" * 80)
    print("Test Results")
    print("=" * 80)
    print(f"Run: {result.test_name}/{result.run_id}")
    print(f"Verdict: {result.verdict.status.value if result.verdict else 'none'}")
    print(f"Duration: {result.end_time - result.start_time:.2f}s")
    print(f"Events Recorded: {result.events_recorded}")
    print(f"Harness Faults: {len(result.harness_faults)}")

    if result.verdict is not None:
        for counterexample in result.verdict.counterexamples:
            for failure in counterexample.get('failures', []):
                op = failure.get('op') or {}
                print(f"  Key {failure.get('key')}: {op.get('f')} {op.get('value')!r} "
                      f"by process {op.get('process')} could not be linearized")

    if result.seed is not None:
        print(f"\nReproduction Seed: {result.seed}")
    if result.error_message:
        print(f"\nError: {result.error_message}")


def run_demo(stale: bool, seed=None):
    """Partition a simulated cluster; with stale reads the checker should find lost writes"""
    target = "memory-stale" if stale else "memory"
    print("=" * 80)
    print(f"Running register demo against the {target} target")
    print("=" * 80)

    config = TestConfig(
        name=f"demo-{target}",
        target=target,
        nodes=["n1", "n2", "n3", "n4", "n5"],
        concurrency=5,
        time_limit=10,
        rate=20,
        keys=3,
        final_read_delay=1,
        seed=seed,
        nemesis=NemesisConfig(faults=["partition"], interval=1.0, partition_strategy="random-halves")
    )
    result = ConsistencyFuzzer().run_test(config)
    print_result(result)
    return result


def run_config(config_file):
    """Run a test described by a YAML config"""
    print("=" * 80)
    print(f"Running config: {config_file}")
    print("=" * 80)

    try:
        config = DSLLoader.load_from_file(config_file)
    except (FileNotFoundError, ValueError) as e:
        print(f"\nError loading config: {e}")
        return None

    result = ConsistencyFuzzer().run_test(config)
    print_result(result)
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Consistency Fuzzer - examples",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # A healthy simulated cluster, expected to be valid
  python run_fuzzer.py demo

  # A simulated cluster that serves stale reads, expected to be invalid
  python run_fuzzer.py demo --stale --seed 42

  # Run a YAML config
  python run_fuzzer.py config examples/register_partition.yaml
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    demo_parser = subparsers.add_parser('demo', help='Run against the simulated cluster')
    demo_parser.add_argument('--stale', action='store_true', help='Serve reads from local replicas')
    demo_parser.add_argument('--seed', type=int, help='Seed for reproducibility')

    config_parser = subparsers.add_parser('config', help='Run a YAML test config')
    config_parser.add_argument('file', help='Path to YAML test config')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'demo':
        result = run_demo(args.stale, seed=args.seed)
    else:
        result = run_config(args.file)
    return 0 if result and result.verdict is not None and result.verdict.valid else 1


if __name__ == "__main__":
    sys.exit(main())
