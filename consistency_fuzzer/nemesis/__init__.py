"""
Nemesis - Fault injection through control-plane capabilities

Components:
- PartitionNemesis: Network partitions described by grudges
- KillNemesis / PauseNemesis: Process crash/restart and SIGSTOP/SIGCONT
- ClockNemesis: Clock skew
- ComposedNemesis: Routes operations to the nemesis that handles them
- NodeSelector: Target node selection
"""
from typing import List, Optional
from ..interfaces import INemesis, INet, IProcessControl, IClock
from ..models import NemesisConfig
from .base import BaseNemesis, NodeSelector, NoopNemesis, ComposedNemesis
from .partition import PartitionNemesis, PARTITION_STRATEGIES, components
from .process import KillNemesis, PauseNemesis, LocalProcessControl
from .clock import ClockNemesis

FAULTS = ("partition", "kill", "pause", "clock")


def build_nemesis(
    config: NemesisConfig,
    net: Optional[INet] = None,
    control: Optional[IProcessControl] = None,
    clock: Optional[IClock] = None,
    seed: Optional[int] = None
) -> INemesis:
    """Assemble the nemesis for the configured faults from the capabilities at hand"""
    targeting = {
        'seed': seed,
        'target_strategy': config.target_strategy,
        'specific_nodes': config.specific_nodes,
    }
    nemeses: List[INemesis] = []
    for fault in config.faults:
        if fault == "partition":
            _require(fault, net)
            nemeses.append(PartitionNemesis(net, strategy=config.partition_strategy, seed=seed))
        elif fault == "kill":
            _require(fault, control)
            nemeses.append(KillNemesis(control, **targeting))
        elif fault == "pause":
            _require(fault, control)
            nemeses.append(PauseNemesis(control, **targeting))
        elif fault == "clock":
            _require(fault, clock)
            nemeses.append(ClockNemesis(clock, max_skew_ms=config.clock_skew_ms, **targeting))
        else:
            raise ValueError(f"Unknown fault '{fault}', expected one of {FAULTS}")

    if not nemeses:
        return NoopNemesis()
    if len(nemeses) == 1:
        return nemeses[0]
    return ComposedNemesis(nemeses)


def _require(fault: str, capability) -> None:
    if capability is None:
        raise ValueError(f"Fault '{fault}' needs a control-plane capability the target does not provide")


__all__ = [
    'BaseNemesis',
    'NodeSelector',
    'NoopNemesis',
    'ComposedNemesis',
    'PartitionNemesis',
    'PARTITION_STRATEGIES',
    'components',
    'KillNemesis',
    'PauseNemesis',
    'LocalProcessControl',
    'ClockNemesis',
    'FAULTS',
    'build_nemesis',
]
