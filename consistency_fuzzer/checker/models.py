"""
Sequential specifications of the data types a store can be checked against
"""
from typing import Any, Dict, Tuple, Type
from ..interfaces import IModel
from ..models import Operation


class Model(IModel):
    """Base model; subclasses implement step for their operation functions"""

    name = "model"
    read_fs: Tuple[str, ...] = ("read",)

    def is_read(self, f: str) -> bool:
        """Reads have no effect, so indeterminate reads can be ignored"""
        return f in self.read_fs

    def initial(self) -> Any:
        return None

    def step(self, state: Any, op: Operation) -> Tuple[bool, Any]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Register(Model):
    """A single read/write register"""

    name = "register"

    def __init__(self, initial: Any = None):
        self._initial = initial

    def initial(self) -> Any:
        return self._initial

    def step(self, state, op):
        if op.f == "write":
            return True, op.value
        if op.f == "read":
            return op.value == state, state
        return False, state


class CASRegister(Register):
    """A register that also supports compare-and-set with value (expected, new)"""

    name = "cas-register"

    def step(self, state, op):
        if op.f == "cas":
            expected, new = op.value
            if expected == state:
                return True, new
            return False, state
        return super().step(state, op)


class SetModel(Model):
    """A grow-only set: add elements, read the whole set"""

    name = "set"

    def initial(self) -> Any:
        return frozenset()

    def step(self, state, op):
        if op.f == "add":
            return True, state | {op.value}
        if op.f == "read":
            return frozenset(op.value or ()) == state, state
        return False, state


class CounterModel(Model):
    """A counter incremented by add(delta) and observed by read"""

    name = "counter"

    def initial(self) -> Any:
        return 0

    def step(self, state, op):
        if op.f == "add":
            return True, state + op.value
        if op.f == "read":
            return op.value == state, state
        return False, state


MODELS: Dict[str, Type[Model]] = {
    Register.name: Register,
    CASRegister.name: CASRegister,
    SetModel.name: SetModel,
    CounterModel.name: CounterModel,
}


def get_model(name: str) -> Model:
    if name not in MODELS:
        raise ValueError(f"Unknown model '{name}', expected one of {sorted(MODELS)}")
    return MODELS[name]()
