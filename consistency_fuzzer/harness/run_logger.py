"""
Run Logger - Structured run log and human-readable summary reports
"""
import json
import time
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from ..models import TestConfig, ExecutionResult, HarnessFault, TestPhase

logger = logging.getLogger(__name__)


class RunLogger:
    """
    Thread-safe log of a test run's milestones (phase changes, harness faults,
    completion), written to <log_dir>/run-log.json as it grows.
    """

    def __init__(self, log_dir: Optional[Union[str, Path]] = None):
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self.run_log: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def log_test_start(self, config: TestConfig, run_id: str) -> None:
        with self._lock:
            self.run_log = {
                'test_name': config.name,
                'run_id': run_id,
                'workload': config.workload,
                'target': config.target,
                'nodes': list(config.nodes),
                'concurrency': config.concurrency,
                'faults': list(config.nemesis.faults),
                'seed': config.seed,
                'start_time': time.time(),
                'start_timestamp': datetime.now().isoformat(),
                'phases': [],
                'harness_faults': [],
                'status': 'running'
            }
            self._write_log_to_disk()

        logger.info(f"Test {config.name} ({run_id}): {config.workload} workload on {len(config.nodes)} nodes, "
                    f"{config.concurrency} workers, faults: {', '.join(config.nemesis.faults) or 'none'}")

    def log_phase(self, phase: TestPhase) -> None:
        with self._lock:
            self.run_log.setdefault('phases', []).append({
                'phase': phase.value,
                'timestamp': time.time()
            })
            self._write_log_to_disk()

    def log_fault(self, fault: HarnessFault) -> None:
        with self._lock:
            self.run_log.setdefault('harness_faults', []).append(fault.to_dict())
            self._write_log_to_disk()

    def log_test_completion(self, result: ExecutionResult, error_summary: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self.run_log.update({
                'end_time': result.end_time,
                'duration': result.end_time - result.start_time,
                'events_recorded': result.events_recorded,
                'verdict': result.verdict.status.value if result.verdict else None,
                'harness_warnings': [w.to_dict() for w in result.warnings],
                'error_message': result.error_message,
                'status': 'passed' if result.success else 'failed'
            })
            if error_summary is not None:
                self.run_log['error_summary'] = error_summary
            self._write_log_to_disk()

    def generate_report(self, results: List[ExecutionResult]) -> str:
        """Summary with the verdict, info/fail counts, harness faults and warnings of each run"""
        if not results:
            return "No test results to report"

        total = len(results)
        valid = sum(1 for r in results if r.verdict is not None and r.verdict.valid)

        report_lines = [
            "=" * 80,
            "CONSISTENCY FUZZER - TEST EXECUTION REPORT",
            "=" * 80,
            "",
            f"Total Runs:         {total}",
            f"Valid:              {valid} ({valid / total * 100:.1f}%)",
            f"Not valid:          {total - valid} ({(total - valid) / total * 100:.1f}%)",
            "",
        ]

        for result in results:
            duration = result.end_time - result.start_time
            verdict = result.verdict
            status = verdict.status.value.upper() if verdict else "ERROR"
            report_lines.append(f"{status} | {result.test_name} ({result.run_id})")
            report_lines.append(f"     Duration: {duration:.2f}s | Events: {result.events_recorded}")

            if verdict is not None:
                stats = verdict.stats
                report_lines.append(
                    f"     ok: {stats.get('ok_count', 0)} | fail: {stats.get('fail_count', 0)} | "
                    f"info: {stats.get('info_count', 0)} | nemesis events: {stats.get('nemesis_events', 0)}"
                )
                for counterexample in verdict.counterexamples:
                    for failure in counterexample.get('failures', []):
                        report_lines.append(f"     Key {failure.get('key')}: {_describe_failure(failure)}")

            for fault in result.harness_faults:
                phase = f" during {fault.phase}" if fault.phase else ""
                report_lines.append(f"     Harness fault [{fault.category}]{phase}: {fault.message}")
            for warning in result.warnings:
                report_lines.append(f"     Harness warning [{warning.category}]: {warning.message}")

            if result.error_message:
                report_lines.append(f"     Error: {result.error_message}")
            if result.seed is not None:
                report_lines.append(f"     Seed: {result.seed} (for reproduction)")
            if result.run_dir:
                report_lines.append(f"     Stored in: {result.run_dir}")
            report_lines.append("")

        report_lines.append("=" * 80)
        report = "\n".join(report_lines)

        if self.log_dir:
            report_file = self.log_dir / "report.txt"
            report_file.write_text(report)
            logger.info(f"Generated report: {report_file}")

        return report

    def _write_log_to_disk(self) -> None:
        # Caller holds self._lock
        if not self.log_dir:
            return
        try:
            with open(self.log_dir / "run-log.json", 'w') as f:
                json.dump(self.run_log, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to write run log to disk: {e}")


def _describe_failure(failure: Dict[str, Any]) -> str:
    op = failure.get('op')
    if op:
        return f"could not linearize {op.get('f')} {op.get('value')!r} by process {op.get('process')}"
    if 'lost' in failure:
        return f"lost {failure['lost']}, unexpected {failure['unexpected']}"
    if 'errors' in failure:
        return f"{len(failure['errors'])} reads outside the possible range"
    return failure.get('reason', "invalid")
