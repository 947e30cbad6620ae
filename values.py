"""Runtime values and their coercion rules.

Every value on the NumStack stack is a ``Value(type, value)`` pair. The
conversions a command may ask for (string, number, bool, list) never fail;
each type registers a ``TypeSpec`` describing how it degrades.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

import rational
from lexer import NumStackError


TYPE_NUM = "number"
TYPE_STR = "string"
TYPE_BOOL = "bool"
TYPE_LIST = "list"
TYPE_MAT = "matrix"
TYPE_OBJ = "object"
TYPE_ERR = "error"

ERROR_PREFIX = "error:"


@dataclass(frozen=True)
class Matrix:
    rows: int
    cols: int
    data: Tuple[Fraction, ...]

    def __post_init__(self) -> None:
        if self.rows * self.cols != len(self.data):
            raise NumStackError(
                f"Matrix shape {self.rows}x{self.cols} does not match {len(self.data)} elements"
            )

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    def row_items(self) -> List[Tuple[Fraction, ...]]:
        cols = self.cols
        return [self.data[i * cols : (i + 1) * cols] for i in range(self.rows)]

    def to_array(self) -> NDArray[Any]:
        # Object arrays keep the Fractions exact through numpy arithmetic.
        return np.array(self.data, dtype=object).reshape(self.rows, self.cols)

    def to_float_array(self) -> NDArray[np.float64]:
        return np.array([rational.to_float(x) for x in self.data], dtype=float).reshape(self.rows, self.cols)

    @classmethod
    def from_array(cls, array: NDArray[Any]) -> "Matrix":
        if array.ndim == 1:
            array = array.reshape(-1, 1)
        rows, cols = array.shape
        data = []
        for item in array.flat:
            if isinstance(item, Fraction):
                data.append(item)
            elif isinstance(item, int):
                data.append(Fraction(item))
            else:
                data.append(rational.from_float(float(item)))
        return cls(rows=int(rows), cols=int(cols), data=tuple(data))


@dataclass(frozen=True)
class Instance:
    type_name: str
    fields: Dict[str, "Value"] = field(default_factory=dict)

    def replace(self, name: str, value: "Value") -> "Instance":
        updated = dict(self.fields)
        updated[name] = value
        return Instance(type_name=self.type_name, fields=updated)


@dataclass
class Value:
    type: str
    value: Any

    def to_str(self) -> str:
        return TYPES.get(self.type).to_str(self)

    def to_number(self) -> Fraction:
        return TYPES.get(self.type).to_number(self)

    def to_bool(self) -> bool:
        return TYPES.get(self.type).to_bool(self)

    def to_list(self) -> List["Value"]:
        return TYPES.get(self.type).to_list(self)

    def display(self) -> str:
        return TYPES.get(self.type).display(self)

    def __str__(self) -> str:
        return self.display()


def number(value: Fraction) -> Value:
    return Value(TYPE_NUM, value)


def string(text: str) -> Value:
    return Value(TYPE_STR, text)


def boolean(flag: bool) -> Value:
    return Value(TYPE_BOOL, bool(flag))


def listing(items: Sequence[Value]) -> Value:
    return Value(TYPE_LIST, list(items))


def matrix(mat: Matrix) -> Value:
    return Value(TYPE_MAT, mat)


def instance(obj: Instance) -> Value:
    return Value(TYPE_OBJ, obj)


def error(tag: str) -> Value:
    return Value(TYPE_ERR, tag)


def empty() -> Value:
    return Value(TYPE_STR, "")


# ---- coercion registry ----

ToStr = Callable[[Value], str]
ToNumber = Callable[[Value], Fraction]
ToBool = Callable[[Value], bool]
ToList = Callable[[Value], List[Value]]


@dataclass(frozen=True)
class TypeSpec:
    name: str
    to_str: ToStr
    to_number: ToNumber
    to_bool: ToBool
    to_list: ToList
    display: Optional[ToStr] = None

    def __post_init__(self) -> None:
        if self.display is None:
            object.__setattr__(self, "display", self.to_str)


@dataclass
class TypeRegistry:
    _types: Dict[str, TypeSpec] = field(default_factory=dict)

    def register(self, spec: TypeSpec) -> None:
        if spec.name in self._types:
            raise NumStackError(f"Type '{spec.name}' is already defined")
        self._types[spec.name] = spec

    def get(self, name: str) -> TypeSpec:
        try:
            return self._types[name]
        except KeyError:
            raise NumStackError(f"Unknown type '{name}'")

    def names(self) -> set[str]:
        return set(self._types.keys())


def parse_number_text(text: str) -> Fraction:
    try:
        return rational.parse_rational(text)
    except (ValueError, ZeroDivisionError, OverflowError):
        return rational.ZERO


def parse_bool_text(text: str) -> Optional[bool]:
    if text == "true":
        return True
    if text == "false":
        return False
    return None


def matrix_text(mat: Matrix) -> str:
    if mat.rows == 0 or mat.cols == 0:
        return "{}"
    rows = [", ".join(rational.format_rational(x) for x in row) for row in mat.row_items()]
    return "{ " + "; ".join(rows) + " }"


def list_text(items: List[Value]) -> str:
    return "[" + " ".join(item.display() for item in items) + "]"


def _single(v: Value) -> List[Value]:
    return [Value(v.type, v.value)]


TYPES = TypeRegistry()

TYPES.register(
    TypeSpec(
        name=TYPE_NUM,
        to_str=lambda v: rational.format_rational(v.value),
        to_number=lambda v: v.value,
        to_bool=lambda v: v.value != 0,
        to_list=_single,
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_STR,
        to_str=lambda v: v.value,
        to_number=lambda v: parse_number_text(v.value),
        to_bool=lambda v: v.value != "",
        to_list=lambda v: [string(ch) for ch in v.value],
        display=lambda v: f"({v.value})",
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_BOOL,
        to_str=lambda v: "true" if v.value else "false",
        to_number=lambda v: rational.from_count(v.value),
        to_bool=lambda v: bool(v.value),
        to_list=_single,
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_LIST,
        to_str=lambda v: list_text(v.value),
        to_number=lambda v: rational.from_count(len(v.value)),
        to_bool=lambda v: len(v.value) > 0,
        to_list=lambda v: list(v.value),
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_MAT,
        to_str=lambda v: matrix_text(v.value),
        to_number=lambda v: rational.ZERO,
        to_bool=lambda v: False,
        to_list=lambda v: [number(x) for x in v.value.data],
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_OBJ,
        to_str=lambda v: f"Object<{v.value.type_name}>",
        to_number=lambda v: rational.from_count(len(v.value.fields)),
        to_bool=lambda v: len(v.value.fields) > 0,
        to_list=lambda v: list(v.value.fields.values()),
    )
)
TYPES.register(
    TypeSpec(
        name=TYPE_ERR,
        to_str=lambda v: f"{ERROR_PREFIX}{v.value}",
        to_number=lambda v: parse_number_text(v.value),
        to_bool=lambda v: bool(parse_bool_text(v.value)),
        to_list=_single,
    )
)


def cast(value: Value, kind: str) -> Value:
    if kind == TYPE_NUM:
        return number(value.to_number())
    if kind == TYPE_STR:
        return string(value.to_str())
    if kind == TYPE_BOOL:
        return boolean(value.to_bool())
    if kind == TYPE_LIST:
        return listing(value.to_list())
    if kind == TYPE_ERR:
        return error(value.to_str())
    return value
