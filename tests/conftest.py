from fractions import Fraction
from typing import Callable, List

import pytest

from interpreter import Interpreter
from values import Value, number


def num(value) -> Value:
    return number(Fraction(value))


@pytest.fixture
def output() -> List[str]:
    return []


@pytest.fixture
def interp(output: List[str]) -> Interpreter:
    return Interpreter(
        output_sink=output.append,
        input_provider=lambda prompt: "typed\n",
        argv=["script.ns", "alpha"],
        seed=7,
    )


@pytest.fixture
def run(interp: Interpreter) -> Callable[[str], List[Value]]:
    def _run(code: str) -> List[Value]:
        interp.evaluate_program(code)
        return interp.stack

    return _run
