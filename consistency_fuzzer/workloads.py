"""
Workloads - Operation streams for each data type, plus the nemesis schedule

Every workload spreads operations over `keys` independent keys, runs for the
configured time (or op count), lets the system settle and finishes with each
worker reading every key once.
"""
import random
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple
from .models import TestConfig, NemesisConfig
from .harness.generator import (
    Generator, GeneratorContext, from_fn, seq, cycle, sleep, each_process, then, clients_nemesis
)
from .nemesis import PartitionNemesis, KillNemesis, PauseNemesis, ClockNemesis

logger = logging.getLogger(__name__)

VALUE_RANGE = 5

FAULT_FS: Dict[str, Tuple[str, ...]] = {
    "partition": (PartitionNemesis.start_f, PartitionNemesis.stop_f),
    "kill": (KillNemesis.start_f, KillNemesis.stop_f),
    "pause": (PauseNemesis.start_f, PauseNemesis.stop_f),
    "clock": (ClockNemesis.start_f, ClockNemesis.stop_f, ClockNemesis.strobe_f),
}


def _seeded(seed: Optional[int]) -> Callable[[Callable[[random.Random], Dict[str, Any]]], Generator]:
    """Wrap an op builder so it draws from one shared, lock-protected RNG"""
    rng = random.Random(seed)
    lock = threading.Lock()

    def wrap(build):
        def fn(context: GeneratorContext):
            with lock:
                return build(rng)
        return from_fn(fn)

    return wrap


def register_ops(keys: int, seed: Optional[int] = None) -> Generator:
    def build(rng):
        key = rng.randrange(keys)
        if rng.random() < 0.5:
            return {'f': 'read', 'key': key}
        return {'f': 'write', 'key': key, 'value': rng.randrange(VALUE_RANGE)}
    return _seeded(seed)(build)


def cas_register_ops(keys: int, seed: Optional[int] = None) -> Generator:
    def build(rng):
        key = rng.randrange(keys)
        roll = rng.random()
        if roll < 0.4:
            return {'f': 'read', 'key': key}
        if roll < 0.7:
            return {'f': 'write', 'key': key, 'value': rng.randrange(VALUE_RANGE)}
        return {'f': 'cas', 'key': key, 'value': (rng.randrange(VALUE_RANGE), rng.randrange(VALUE_RANGE))}
    return _seeded(seed)(build)


def set_ops(keys: int, seed: Optional[int] = None) -> Generator:
    """Adds unique elements; the set is only read at the end"""
    counter = {'next': 0}

    def build(rng):
        element = counter['next']
        counter['next'] += 1
        return {'f': 'add', 'key': rng.randrange(keys), 'value': element}
    return _seeded(seed)(build)


def counter_ops(keys: int, seed: Optional[int] = None) -> Generator:
    def build(rng):
        key = rng.randrange(keys)
        if rng.random() < 0.3:
            return {'f': 'read', 'key': key}
        return {'f': 'add', 'key': key, 'value': rng.randint(1, 5)}
    return _seeded(seed)(build)


WORKLOADS: Dict[str, Callable[[int, Optional[int]], Generator]] = {
    "register": register_ops,
    "cas-register": cas_register_ops,
    "set": set_ops,
    "counter": counter_ops,
}


def final_reads(keys: int) -> Generator:
    """Each worker reads every key once"""
    return each_process(lambda: seq([{'f': 'read', 'key': k} for k in range(keys)]))


def nemesis_schedule(config: NemesisConfig, time_limit: float) -> Optional[Generator]:
    """Start and stop every configured fault in turn, one action per interval"""
    ops: List[Dict[str, Any]] = []
    for fault in config.faults:
        if fault not in FAULT_FS:
            raise ValueError(f"Unknown fault '{fault}', expected one of {sorted(FAULT_FS)}")
        ops.extend({'f': f} for f in FAULT_FS[fault])
    if not ops:
        return None
    return cycle(ops).delay(config.interval).time_limit(time_limit)


def build_generator(config: TestConfig) -> Generator:
    """The complete generator for a run: client operations and the nemesis schedule"""
    if config.workload not in WORKLOADS:
        raise ValueError(f"Unknown workload '{config.workload}', expected one of {sorted(WORKLOADS)}")

    main = WORKLOADS[config.workload](config.keys, config.seed)
    main = main.stagger(1.0 / config.rate, config.seed)
    if config.op_limit:
        main = main.limit(config.op_limit)
    main = main.time_limit(config.time_limit)

    clients = then(main, sleep(config.final_read_delay), final_reads(config.keys))
    nemesis = nemesis_schedule(config.nemesis, config.time_limit)
    logger.debug(f"Built {config.workload} generator over {config.keys} keys")
    return clients_nemesis(clients, nemesis)
