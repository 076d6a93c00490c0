"""
Checker - Post-hoc analysis of recorded histories

Components:
- LinearizableChecker: bounded linearizability search for one object
- IndependentChecker: per-key decomposition
- SetChecker / CounterChecker: data-type specific checks
- StatsChecker / ComposeChecker: statistics and checker composition
- analyze: history -> Verdict
"""
from .models import Model, Register, CASRegister, SetModel, CounterModel, get_model
from .linearizable import LinearizableChecker
from .checkers import (
    IndependentChecker,
    SetChecker,
    CounterChecker,
    StatsChecker,
    ComposeChecker,
    history_stats,
    merge_status
)
from .verdict import analyze, build_checker

__all__ = [
    'Model',
    'Register',
    'CASRegister',
    'SetModel',
    'CounterModel',
    'get_model',
    'LinearizableChecker',
    'IndependentChecker',
    'SetChecker',
    'CounterChecker',
    'StatsChecker',
    'ComposeChecker',
    'history_stats',
    'merge_status',
    'analyze',
    'build_checker',
]
