"""
Run Store - Persists histories, verdicts and configurations of test runs

Layout: <base_dir>/<test name>/<run id>/{history.jsonl, verdict.json, config.yaml}
"""
import json
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from ..models import Event, TestConfig, Verdict
from .history import History
from .dsl_utils import DSLLoader

logger = logging.getLogger(__name__)

HISTORY_FILE = "history.jsonl"
VERDICT_FILE = "verdict.json"
CONFIG_FILE = "config.yaml"


class RunStore:
    """Reads and writes run directories under base_dir"""

    def __init__(self, base_dir: Union[str, Path] = "/tmp/consistency-fuzzer/store"):
        self.base_dir = Path(base_dir)

    def new_run(self, test_name: str) -> Path:
        run_id = f"{datetime.now().strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:6]}"
        run_dir = self.base_dir / test_name / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storing run in {run_dir}")
        return run_dir

    def save_history(self, run_dir: Union[str, Path], history: History) -> Path:
        path = Path(run_dir) / HISTORY_FILE
        with open(path, 'w') as f:
            for event in history:
                f.write(json.dumps(event.to_dict(), default=str))
                f.write("\n")
        return path

    def save_verdict(self, run_dir: Union[str, Path], verdict: Verdict) -> Path:
        path = Path(run_dir) / VERDICT_FILE
        with open(path, 'w') as f:
            json.dump(verdict.to_dict(), f, indent=2, default=str)
        return path

    def save_config(self, run_dir: Union[str, Path], config: TestConfig) -> Path:
        path = Path(run_dir) / CONFIG_FILE
        DSLLoader.save_config(config, path)
        return path

    def load_history(self, run_dir: Union[str, Path]) -> History:
        path = Path(run_dir) / HISTORY_FILE
        if not path.exists():
            raise FileNotFoundError(f"No history at {path}")
        events = []
        with open(path, 'r') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(Event.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    raise ValueError(f"{path}:{line_number}: malformed event: {e}") from e
        return History(events)

    def load_verdict(self, run_dir: Union[str, Path]) -> Optional[Dict[str, Any]]:
        path = Path(run_dir) / VERDICT_FILE
        if not path.exists():
            return None
        with open(path, 'r') as f:
            return json.load(f)

    def load_config(self, run_dir: Union[str, Path]) -> Optional[TestConfig]:
        path = Path(run_dir) / CONFIG_FILE
        if not path.exists():
            return None
        return DSLLoader.load_from_file(path)

    def resolve(self, run: Union[str, Path]) -> Path:
        """Accept a run directory, or "<test>/<run id>" relative to the store"""
        path = Path(run)
        if (path / HISTORY_FILE).exists():
            return path
        candidate = self.base_dir / run
        if (candidate / HISTORY_FILE).exists():
            return candidate
        raise FileNotFoundError(f"No stored run at {run}")

    def list_runs(self, test_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Stored runs, newest first, with their verdict status when known"""
        if not self.base_dir.exists():
            return []
        tests = [self.base_dir / test_name] if test_name else sorted(self.base_dir.iterdir())
        runs = []
        for test_dir in tests:
            if not test_dir.is_dir():
                continue
            for run_dir in test_dir.iterdir():
                if not (run_dir / HISTORY_FILE).exists():
                    continue
                verdict = self.load_verdict(run_dir)
                runs.append({
                    'test': test_dir.name,
                    'run_id': run_dir.name,
                    'path': str(run_dir),
                    'status': verdict['status'] if verdict else "unknown",
                    'harness_faults': len(verdict.get('harness_faults', [])) if verdict else 0,
                })
        runs.sort(key=lambda r: r['run_id'], reverse=True)
        return runs
