from __future__ import annotations
import copy
import math
import random
import re
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Callable, Deque, Dict, List, Optional

import numpy as np

import plotting
import rational
from lexer import Lexer, NumStackError, scan_string_literal
from values import (
    ERROR_PREFIX,
    TYPE_LIST,
    TYPE_MAT,
    TYPE_NUM,
    TYPE_OBJ,
    Instance,
    Matrix,
    Value,
    boolean,
    cast,
    empty,
    error,
    instance,
    listing,
    matrix,
    number,
    string,
)


# Exponents above this go through float pow instead of exact Fraction power.
MAX_EXACT_EXPONENT = 1024

OUTPUT_ESCAPES = (("\\n", "\n"), ("\\t", "\t"), ("\\r", "\r"))

# Trace entries and diagnostics kept by a StateLogger.
LOG_HISTORY = 1000

# Every level of nested code (eval, if, while, map, method, ...) costs a
# handful of Python frames, so script runs get a deeper limit and a worker
# thread with a stack large enough to hold it.
RECURSION_LIMIT = 100_000
THREAD_STACK_SIZE = 256 * 1024 * 1024


class NumStackRuntimeError(NumStackError):
    """Raised by a command for a recoverable fault; becomes an Error value."""

    def __init__(self, message: str, *, tag: str, rule: str) -> None:
        super().__init__(message)
        self.message = message
        self.tag = tag
        self.rule = rule


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


@dataclass
class Environment:
    stack: List[Value] = field(default_factory=list)
    memory: Dict[str, Value] = field(default_factory=dict)

    def push(self, value: Value) -> None:
        self.stack.append(value)

    def pop(self) -> Optional[Value]:
        if not self.stack:
            return None
        return self.stack.pop()

    def bind(self, name: str, value: Value) -> None:
        self.memory[name] = value

    def get_optional(self, name: str) -> Optional[Value]:
        return self.memory.get(name)

    def has(self, name: str) -> bool:
        return name in self.memory

    def delete(self, name: str) -> bool:
        return self.memory.pop(name, None) is not None

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = val.display()
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return rendered

        return {k: _render(v) for k, v in self.memory.items()}

    def clone(self) -> "Environment":
        return Environment(stack=copy.deepcopy(self.stack), memory=copy.deepcopy(self.memory))


@dataclass
class StateEntry:
    step_index: int
    depth: int
    token: str
    stack: str


class StateLogger:
    """Step trace and diagnostics.

    Steps are always counted; entries are kept and echoed only in verbose
    (debug) mode. Diagnostics are always counted and echoed when verbose.
    Only the most recent ``history`` entries and diagnostics are retained.
    """

    def __init__(self, verbose: bool, sink: Callable[[str], None], history: int = LOG_HISTORY) -> None:
        self.verbose = verbose
        self.sink = sink
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.diagnostics: Deque[str] = deque(maxlen=history)
        self.next_state_index = 0
        self.diagnostic_count = 0

    def record(self, *, depth: int, token: str, stack: Callable[[], str]) -> Optional[StateEntry]:
        step_index = self.next_state_index
        self.next_state_index += 1
        if not self.verbose:
            return None
        entry = StateEntry(step_index=step_index, depth=depth, token=token, stack=stack())
        self.entries.append(entry)
        self.sink(f"{entry.stack} ←  {token}\n")
        return entry

    def diagnostic(self, message: str) -> None:
        self.diagnostics.append(message)
        self.diagnostic_count += 1
        self.echo(f"Error! {message}\n")

    def echo(self, text: str) -> None:
        if self.verbose:
            self.sink(text)


BuiltinImpl = Callable[["Interpreter", List[Value], Environment], Optional[Value]]


@dataclass
class BuiltinFunction:
    name: str
    arity: int
    impl: BuiltinImpl


def _index_of(value: Value) -> int:
    return rational.truncate(value.to_number())


def _expand_escapes(text: str) -> str:
    for encoded, char in OUTPUT_ESCAPES:
        text = text.replace(encoded, char)
    return text


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        # Arithmetic and logic
        self._register_number_binary("add", lambda a, b: a + b)
        self._register_number_binary("sub", lambda a, b: a - b)
        self._register_number_binary("mul", lambda a, b: a * b)
        self._register_number_binary("div", lambda a, b: a / b)
        self._register_number_binary("mod", rational.truncated_mod)
        self._register("pow", 2, self._pow)
        self._register("round", 1, self._round)
        self._register_float_unary("sin", math.sin)
        self._register_float_unary("cos", math.cos)
        self._register_float_unary("tan", math.tan)
        self._register_float_unary("exp", math.exp)
        self._register("and", 2, self._and)
        self._register("or", 2, self._or)
        self._register("not", 1, self._not)
        self._register("equal", 2, self._equal)
        self._register("less", 2, self._less)
        self._register("rand", 1, self._rand)
        self._register("shuffle", 1, self._shuffle)
        # Strings
        self._register("repeat", 2, self._repeat)
        self._register("decode", 1, self._decode)
        self._register("encode", 1, self._encode)
        self._register("concat", 2, self._concat)
        self._register("replace", 3, self._replace)
        self._register("split", 2, self._split)
        self._register("case", 2, self._case)
        self._register("join", 2, self._join)
        self._register("find", 2, self._find)
        self._register("regex", 2, self._regex)
        # I/O
        self._register("write-file", 2, self._write_file)
        self._register("read-file", 1, self._read_file)
        self._register("input", 1, self._input)
        self._register("print", 1, self._print)
        self._register("println", 1, self._println)
        self._register("args-cmd", 0, self._args_cmd)
        # Control
        self._register("eval", 1, self._eval)
        self._register("if", 3, self._if)
        self._register("while", 2, self._while)
        self._register("thread", 1, self._thread)
        self._register("exit", 1, self._exit)
        # Lists
        self._register("get", 2, self._get)
        self._register("set", 3, self._set)
        self._register("del", 2, self._del)
        self._register("append", 2, self._append)
        self._register("insert", 3, self._insert)
        self._register("index", 2, self._index)
        self._register("sort", 1, self._sort)
        self._register("reverse", 1, self._reverse)
        self._register("for", 3, self._for)
        self._register("range", 3, self._range)
        self._register("len", 1, self._len)
        # Functional
        self._register("map", 3, self._map)
        self._register("filter", 3, self._filter)
        self._register("reduce", 5, self._reduce)
        # Memory and stack
        self._register("pop", 1, self._pop)
        self._register("size-stack", 0, self._size_stack)
        self._register("get-stack", 0, self._get_stack)
        self._register("var", 2, self._var)
        self._register("type", 1, self._type)
        self._register("cast", 2, self._cast)
        self._register("mem", 0, self._mem)
        self._register("free", 1, self._free)
        self._register("copy", 1, self._copy)
        self._register("swap", 2, self._swap)
        # Time
        self._register("now-time", 0, self._now_time)
        self._register("sleep", 1, self._sleep)
        # Matrices
        self._register("scalar-mul", 2, self._scalar_mul)
        self._register("add-matrix", 2, self._add_matrix)
        self._register("sub-matrix", 2, self._sub_matrix)
        self._register("mul-matrix", 2, self._mul_matrix)
        self._register("transpose", 1, self._transpose)
        self._register("inverse", 1, self._inverse)
        self._register("sim-equation", 2, self._sim_equation)
        # Graph and charts
        self._register("graph", 1, self._graph)
        self._register("bar-chart", 1, self._bar_chart)
        self._register("line-chart", 1, self._line_chart)
        # Objects
        self._register("instance", 2, self._instance)
        self._register("property", 2, self._property)
        self._register("method", 2, self._method)
        self._register("modify", 3, self._modify)

    def _register(self, name: str, arity: int, impl: BuiltinImpl) -> None:
        self.table[name] = BuiltinFunction(name=name, arity=arity, impl=impl)

    def _register_number_binary(self, name: str, func: Callable[[Fraction, Fraction], Fraction]) -> None:
        def impl(_: "Interpreter", args: List[Value], __: Environment) -> Value:
            return number(func(args[0].to_number(), args[1].to_number()))

        self._register(name, 2, impl)

    def _register_float_unary(self, name: str, func: Callable[[float], float]) -> None:
        def impl(_: "Interpreter", args: List[Value], __: Environment) -> Value:
            x = rational.to_float(args[0].to_number())
            return number(rational.from_float(func(x)))

        self._register(name, 1, impl)

    def has(self, name: str) -> bool:
        return name in self.table

    def invoke(self, interpreter: "Interpreter", name: str, env: Environment) -> None:
        builtin = self.table.get(name)
        if builtin is None:
            raise NumStackError(f"Unknown command '{name}'")
        args = interpreter.pop_args(builtin.arity)
        try:
            result = builtin.impl(interpreter, args, env)
        except NumStackRuntimeError as exc:
            interpreter.logger.diagnostic(f"{exc.rule}: {exc.message}")
            result = error(exc.tag)
        except RecursionError:
            # Near the limit this handler can overflow too; an outer invoke then takes it.
            interpreter.logger.diagnostic(f"{name}: nested code is too deep")
            result = error("recursion-depth")
        except ZeroDivisionError:
            interpreter.logger.diagnostic(f"{name}: division by zero")
            result = error("zero-division")
        except OverflowError:
            interpreter.logger.diagnostic(f"{name}: result is not a finite number")
            result = error("not-finite")
        except ValueError as exc:
            interpreter.logger.diagnostic(f"{name}: {exc}")
            result = error("math-domain")
        if result is not None:
            env.push(result)

    # Helpers
    def _expect_matrix(self, value: Value, rule: str) -> Matrix:
        if value.type != TYPE_MAT:
            raise NumStackRuntimeError("expects matrix arguments", tag="not-matrix", rule=rule)
        assert isinstance(value.value, Matrix)
        return value.value

    def _expect_instance(self, value: Value, rule: str) -> Instance:
        if value.type != TYPE_OBJ:
            raise NumStackRuntimeError("expects an object", tag="not-object", rule=rule)
        assert isinstance(value.value, Instance)
        return value.value

    def _out_of_range(self, rule: str) -> NumStackRuntimeError:
        return NumStackRuntimeError("Index specification is out of range", tag="index-out-range", rule=rule)

    def _same_shape(self, a: Matrix, b: Matrix, rule: str) -> None:
        if a.shape != b.shape:
            raise NumStackRuntimeError(
                f"expects matrices of equal shape, got {a.rows}x{a.cols} and {b.rows}x{b.cols}",
                tag="matrix-shape",
                rule=rule,
            )

    # Arithmetic and logic
    def _pow(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        base, exponent = args[0].to_number(), args[1].to_number()
        if exponent.denominator == 1 and abs(exponent.numerator) <= MAX_EXACT_EXPONENT:
            return number(base ** exponent.numerator)
        result = math.pow(rational.to_float(base), rational.to_float(exponent))
        return number(rational.from_float(result))

    def _round(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return number(rational.round_half_away(args[0].to_number()))

    def _and(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(args[0].to_bool() and args[1].to_bool())

    def _or(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(args[0].to_bool() or args[1].to_bool())

    def _not(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(not args[0].to_bool())

    def _equal(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(args[0].to_str() == args[1].to_str())

    def _less(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(args[0].to_number() < args[1].to_number())

    def _rand(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> Value:
        items = args[0].to_list()
        if not items:
            return listing(items)
        return interpreter.rng.choice(items)

    def _shuffle(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> Value:
        items = args[0].to_list()
        interpreter.rng.shuffle(items)
        return listing(items)

    # Strings
    def _repeat(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        count = max(0, _index_of(args[1]))
        return string(args[0].to_str() * count)

    def _decode(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        code = _index_of(args[0])
        if code < 0 or code > sys.maxunicode or 0xD800 <= code <= 0xDFFF:
            raise NumStackRuntimeError("failed of number decoding", tag="number-decoding", rule="decode")
        return string(chr(code))

    def _encode(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        text = args[0].to_str()
        if not text:
            raise NumStackRuntimeError("failed of string encoding", tag="string-encoding", rule="encode")
        return number(Fraction(ord(text[0])))

    def _concat(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return string(args[0].to_str() + args[1].to_str())

    def _replace(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        text, before, after = (arg.to_str() for arg in args)
        return string(text.replace(before, after))

    def _split(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        text, key = args[0].to_str(), args[1].to_str()
        parts = list(text) if key == "" else text.split(key)
        return listing([string(part) for part in parts])

    def _case(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        text, style = args[0].to_str(), args[1].to_str()
        if style == "lower":
            return string(text.lower())
        if style == "upper":
            return string(text.upper())
        return string(text)

    def _join(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        key = args[1].to_str()
        return string(key.join(item.to_str() for item in args[0].to_list()))

    def _find(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return boolean(args[1].to_str() in args[0].to_str())

    def _regex(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        text, pattern = args[0].to_str(), args[1].to_str()
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise NumStackRuntimeError(f"invalid regular expression: {exc}", tag="regex", rule="regex")
        return listing([string(match.group(0)) for match in compiled.finditer(text)])

    # I/O
    def _write_file(self, _: "Interpreter", args: List[Value], __: Environment) -> None:
        content, path = args[0].to_str(), args[1].to_str()
        try:
            handle = open(path, "w", encoding="utf-8")
        except OSError as exc:
            raise NumStackRuntimeError(f"Failed to create '{path}': {exc}", tag="create-file", rule="write-file")
        with handle:
            try:
                handle.write(content)
            except OSError as exc:
                raise NumStackRuntimeError(f"Failed to write '{path}': {exc}", tag="write-file", rule="write-file")
        return None

    def _read_file(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        path = args[0].to_str()
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as handle:
                data = handle.read()
        except OSError as exc:
            raise NumStackRuntimeError(f"Failed to read '{path}': {exc}", tag="read-file", rule="read-file")
        return string(data)

    def _input(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> Value:
        prompt = args[0].to_str()
        try:
            text = interpreter.input_provider(prompt)
        except EOFError:
            text = ""
        return string(text.rstrip("\r\n"))

    def _print(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.write_output(_expand_escapes(args[0].to_str()), newline=False)
        return None

    def _println(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.write_output(_expand_escapes(args[0].to_str()), newline=True)
        return None

    def _args_cmd(self, interpreter: "Interpreter", _: List[Value], __: Environment) -> Value:
        return listing([string(arg) for arg in interpreter.argv])

    # Control
    def _eval(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.evaluate_program(args[0].to_str())
        return None

    def _if(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        code_if, code_else, condition = args
        if condition.to_bool():
            interpreter.evaluate_program(code_if.to_str())
        else:
            interpreter.evaluate_program(code_else.to_str())
        return None

    def _while(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        body, condition = args[0].to_str(), args[1].to_str()
        while True:
            interpreter.evaluate_program(condition)
            if not interpreter.pop().to_bool():
                break
            interpreter.evaluate_program(body)
        return None

    def _thread(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.spawn(args[0].to_str())
        return None

    def _exit(self, _: "Interpreter", args: List[Value], __: Environment) -> None:
        raise ExitSignal(_index_of(args[0]))

    # Lists
    def _get(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items, index = args[0].to_list(), _index_of(args[1])
        if 0 <= index < len(items):
            return items[index]
        raise self._out_of_range("get")

    def _set(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items, index, value = args[0].to_list(), _index_of(args[1]), args[2]
        if 0 <= index < len(items):
            items[index] = value
            return listing(items)
        raise self._out_of_range("set")

    def _del(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items, index = args[0].to_list(), _index_of(args[1])
        if 0 <= index < len(items):
            del items[index]
            return listing(items)
        raise self._out_of_range("del")

    def _append(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items = args[0].to_list()
        items.append(args[1])
        return listing(items)

    def _insert(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items, index, value = args[0].to_list(), _index_of(args[1]), args[2]
        if 0 <= index <= len(items):
            items.insert(index, value)
            return listing(items)
        raise self._out_of_range("insert")

    def _index(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        target = args[1].to_str()
        for position, item in enumerate(args[0].to_list()):
            if item.to_str() == target:
                return number(Fraction(position))
        raise NumStackRuntimeError("item not found in the list", tag="item-not-found", rule="index")

    def _sort(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items = args[0].to_list()
        if all(item.type == TYPE_NUM for item in items):
            items.sort(key=lambda item: item.value)
        else:
            items.sort(key=lambda item: item.to_str())
        return listing(items)

    def _reverse(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        items = args[0].to_list()
        items.reverse()
        return listing(items)

    def _for(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> None:
        items, name, code = args[0].to_list(), args[1].to_str(), args[2].to_str()
        for item in items:
            env.bind(name, item)
            interpreter.evaluate_program(code)
        return None

    def _range(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        start, stop, step = (arg.to_number() for arg in args)
        if step == 0:
            raise NumStackRuntimeError("range step must be non-zero", tag="range-step", rule="range")
        out: List[Value] = []
        current = start
        while (current < stop) if step > 0 else (current > stop):
            out.append(number(current))
            current += step
        return listing(out)

    def _len(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return number(Fraction(len(args[0].to_list())))

    # Functional
    def _map(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> Value:
        items, name, code = args[0].to_list(), args[1].to_str(), args[2].to_str()
        out: List[Value] = []
        for item in items:
            env.bind(name, item)
            interpreter.evaluate_program(code)
            out.append(interpreter.pop())
        return listing(out)

    def _filter(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> Value:
        items, name, code = args[0].to_list(), args[1].to_str(), args[2].to_str()
        out: List[Value] = []
        for item in items:
            env.bind(name, item)
            interpreter.evaluate_program(code)
            if interpreter.pop().to_bool():
                out.append(item)
        return listing(out)

    def _reduce(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> Value:
        items = args[0].to_list()
        acc, init, name, code = args[1].to_str(), args[2], args[3].to_str(), args[4].to_str()
        env.bind(acc, init)
        for item in items:
            env.bind(name, item)
            interpreter.evaluate_program(code)
            env.bind(acc, interpreter.pop())
        result = env.get_optional(acc) or empty()
        env.bind(acc, empty())
        return result

    # Memory and stack
    def _pop(self, _: "Interpreter", __: List[Value], ___: Environment) -> None:
        return None

    def _size_stack(self, _: "Interpreter", __: List[Value], env: Environment) -> Value:
        return number(Fraction(len(env.stack)))

    def _get_stack(self, _: "Interpreter", __: List[Value], env: Environment) -> Value:
        return listing(list(env.stack))

    def _var(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> None:
        value, name = args[0], args[1].to_str()
        env.bind(name, value)
        interpreter.show_variables()
        return None

    def _type(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return string(args[0].type)

    def _cast(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return cast(args[0], args[1].to_str())

    def _mem(self, _: "Interpreter", __: List[Value], env: Environment) -> Value:
        return listing([string(name) for name in env.memory])

    def _free(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> None:
        env.delete(args[0].to_str())
        interpreter.show_variables()
        return None

    def _copy(self, _: "Interpreter", args: List[Value], env: Environment) -> Value:
        env.push(args[0])
        return copy.deepcopy(args[0])

    def _swap(self, _: "Interpreter", args: List[Value], env: Environment) -> Value:
        env.push(args[1])
        return args[0]

    # Time
    def _now_time(self, _: "Interpreter", __: List[Value], ___: Environment) -> Value:
        return number(rational.from_float(time.time()))

    def _sleep(self, _: "Interpreter", args: List[Value], __: Environment) -> None:
        time.sleep(max(0.0, rational.to_float(args[0].to_number())))
        return None

    # Matrices
    def _scalar_mul(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        mat = self._expect_matrix(args[0], "scalar-mul")
        factor = args[1].to_number()
        return matrix(Matrix.from_array(mat.to_array() * factor))

    def _add_matrix(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        a = self._expect_matrix(args[0], "add-matrix")
        b = self._expect_matrix(args[1], "add-matrix")
        self._same_shape(a, b, "add-matrix")
        return matrix(Matrix.from_array(a.to_array() + b.to_array()))

    def _sub_matrix(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        a = self._expect_matrix(args[0], "sub-matrix")
        b = self._expect_matrix(args[1], "sub-matrix")
        self._same_shape(a, b, "sub-matrix")
        return matrix(Matrix.from_array(a.to_array() - b.to_array()))

    def _mul_matrix(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        a = self._expect_matrix(args[0], "mul-matrix")
        b = self._expect_matrix(args[1], "mul-matrix")
        if a.cols != b.rows:
            raise NumStackRuntimeError(
                f"cannot multiply {a.rows}x{a.cols} by {b.rows}x{b.cols}",
                tag="matrix-shape",
                rule="mul-matrix",
            )
        product = np.dot(a.to_array(), b.to_array()).reshape(a.rows, b.cols)
        return matrix(Matrix.from_array(product))

    def _transpose(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        mat = self._expect_matrix(args[0], "transpose")
        return matrix(Matrix.from_array(mat.to_array().T))

    def _inverse(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        mat = self._expect_matrix(args[0], "inverse")
        if mat.rows != mat.cols:
            raise NumStackRuntimeError("expects a square matrix", tag="no-inverse", rule="inverse")
        try:
            inverted = np.linalg.inv(mat.to_float_array())
        except np.linalg.LinAlgError as exc:
            raise NumStackRuntimeError(f"matrix has no inverse: {exc}", tag="no-inverse", rule="inverse")
        if not np.all(np.isfinite(inverted)):
            raise NumStackRuntimeError("matrix has no inverse", tag="no-inverse", rule="inverse")
        return matrix(Matrix.from_array(inverted))

    def _sim_equation(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        constants = [rational.to_float(item.to_number()) for item in args[0].to_list()]
        coefficients = self._expect_matrix(args[1], "sim-equation")
        try:
            solution = np.linalg.solve(coefficients.to_float_array(), np.array(constants, dtype=float))
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise NumStackRuntimeError(f"equation has no solution: {exc}", tag="no-solution", rule="sim-equation")
        if not np.all(np.isfinite(solution)):
            raise NumStackRuntimeError("equation has no solution", tag="no-solution", rule="sim-equation")
        return matrix(Matrix.from_array(solution))

    # Graph and charts
    def _graph(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        return string(plotting.render_dot(self._expect_matrix(args[0], "graph")))

    def _series(self, value: Value) -> List[float]:
        return [rational.to_float(item.to_number()) for item in value.to_list()]

    def _bar_chart(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.write_output(plotting.render_bar_chart(self._series(args[0])), newline=False)
        return None

    def _line_chart(self, interpreter: "Interpreter", args: List[Value], __: Environment) -> None:
        interpreter.write_output(plotting.render_line_chart(self._series(args[0])), newline=False)
        return None

    # Objects
    def _instance(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        template, data = args[0].to_list(), args[1].to_list()
        if not template:
            raise NumStackRuntimeError("class template needs a type name", tag="instance-name", rule="instance")
        type_name = template[0].to_str()
        fields: Dict[str, Value] = {}
        supplied = iter(data)
        for spec in template[1:]:
            parts = spec.value if spec.type == TYPE_LIST else [spec]
            if len(parts) == 1:
                value = next(supplied, None)
                if value is None:
                    raise NumStackRuntimeError(
                        f"not enough data for field '{parts[0].to_str()}'", tag="instance-shortage", rule="instance"
                    )
                fields[parts[0].to_str()] = value
            elif len(parts) >= 2:
                fields[parts[0].to_str()] = parts[1]
            else:
                raise NumStackRuntimeError("empty field specification", tag="instance-default", rule="instance")
        return instance(Instance(type_name=type_name, fields=fields))

    def _property(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        obj, name = self._expect_instance(args[0], "property"), args[1].to_str()
        if name not in obj.fields:
            raise NumStackRuntimeError(f"object has no property '{name}'", tag="item-not-found", rule="property")
        return obj.fields[name]

    def _method(self, interpreter: "Interpreter", args: List[Value], env: Environment) -> None:
        obj, name = self._expect_instance(args[0], "method"), args[1].to_str()
        if name not in obj.fields:
            raise NumStackRuntimeError(f"object has no method '{name}'", tag="item-not-found", rule="method")
        env.bind("self", instance(obj))
        interpreter.evaluate_program(obj.fields[name].to_str())
        return None

    def _modify(self, _: "Interpreter", args: List[Value], __: Environment) -> Value:
        obj, name, value = self._expect_instance(args[0], "modify"), args[1].to_str(), args[2]
        return instance(obj.replace(name, value))


def _start_thread(target: Callable[..., None], *args: object, daemon: bool) -> threading.Thread:
    previous = threading.stack_size(THREAD_STACK_SIZE)
    try:
        thread = threading.Thread(target=target, args=args, daemon=daemon)
        thread.start()
    finally:
        threading.stack_size(previous)
    return thread


def _stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Interpreter:
    def __init__(
        self,
        *,
        debug: bool = False,
        env: Optional[Environment] = None,
        input_provider: Optional[Callable[[str], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        argv: Optional[List[str]] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.debug = debug
        self.env = env if env is not None else Environment()
        self.input_provider = input_provider or input
        self.output_sink = output_sink or _stdout_sink
        self.argv: List[str] = list(sys.argv if argv is None else argv)
        self.rng = random.Random(seed)
        self.builtins = Builtins()
        self.logger = StateLogger(verbose=debug, sink=self.output_sink)
        # Spawned threads still running at the last spawn; never joined here.
        self.threads: List[threading.Thread] = []
        self.depth = 0

    @property
    def stack(self) -> List[Value]:
        return self.env.stack

    @property
    def memory(self) -> Dict[str, Value]:
        return self.env.memory

    def tokenize(self, code: str) -> List[str]:
        return Lexer(code).tokenize()

    def evaluate_program(self, code: str) -> None:
        tokens = self.tokenize(code)
        self.depth += 1
        try:
            for token in tokens:
                self._log_step(token)
                self._evaluate_token(token)
        finally:
            self.depth -= 1
        if self.debug:
            self.logger.echo(f"{self.show_stack()}\n")

    def _evaluate_token(self, token: str) -> None:
        env = self.env
        if rational.is_decimal_literal(token):
            try:
                env.push(number(rational.parse_decimal(token)))
            except (OverflowError, ValueError) as exc:
                self.logger.diagnostic(f"cannot represent '{token[:40]}': {exc}")
                env.push(error("not-finite"))
        elif token in ("true", "false"):
            env.push(boolean(token == "true"))
        elif len(token) >= 2 and token[0] == "(" and token[-1] == ")":
            env.push(string(scan_string_literal(token[1:-1])))
        elif len(token) >= 2 and token[0] == "[" and token[-1] == "]":
            self._evaluate_list_literal(token[1:-1])
        elif len(token) >= 2 and token[0] == "{" and token[-1] == "}":
            self._evaluate_matrix_literal(token[1:-1])
        elif token.startswith(ERROR_PREFIX):
            env.push(error(token[len(ERROR_PREFIX) :]))
        elif env.has(token):
            env.push(env.memory[token])
        elif token[0] == "#" and token[-1] == "#":
            self.logger.echo(f'* Comment "{token.replace("#", "")}"\n')
        elif rational.is_fraction_literal(token):
            try:
                env.push(number(rational.parse_fraction(token)))
            except ZeroDivisionError:
                self.logger.diagnostic(f"zero denominator in '{token}'")
                env.push(error("zero-division"))
        elif self.builtins.has(token):
            self.builtins.invoke(self, token, env)
        else:
            # Unknown words are data, not errors.
            env.push(string(token))

    def _evaluate_list_literal(self, body: str) -> None:
        stack = self.env.stack
        base = len(stack)
        self.evaluate_program(body)
        items = stack[base:]
        del stack[base:]
        self.env.push(listing(items))

    def _evaluate_matrix_literal(self, body: str) -> None:
        if not body.strip():
            self.env.push(matrix(Matrix(rows=0, cols=0, data=())))
            return
        rows = [row.split(",") for row in body.split(";")]
        cols = len(rows[0])
        if any(len(row) != cols for row in rows):
            self.logger.diagnostic(f"matrix rows differ in length: {{{body}}}")
            self.env.push(error("matrix-shape"))
            return
        data: List[Fraction] = []
        for row in rows:
            for fragment in row:
                self.evaluate_program(fragment)
                data.append(self.pop().to_number())
        self.env.push(matrix(Matrix(rows=len(rows), cols=cols, data=tuple(data))))

    def pop(self) -> Value:
        value = self.env.pop()
        if value is None:
            self.logger.diagnostic("There are not enough values on the stack. returns default value")
            return empty()
        return value

    def pop_args(self, count: int) -> List[Value]:
        args = [self.pop() for _ in range(count)]
        args.reverse()
        return args

    def write_output(self, text: str, *, newline: bool) -> None:
        if self.debug:
            self.output_sink(f"[Output]: {text}\n")
        elif newline:
            self.output_sink(text + "\n")
        else:
            self.output_sink(text)

    def show_stack(self) -> str:
        return "Stack〔 " + " | ".join(value.display() for value in self.env.stack) + " 〕"

    def show_variables(self) -> None:
        if not self.debug:
            return
        snapshot = self.env.snapshot()
        width = max((len(name) for name in snapshot), default=0)
        lines = ["Variables {"]
        lines.extend(f" {name:>{width}}: {rendered}" for name, rendered in snapshot.items())
        lines.append("}")
        self.logger.echo("\n".join(lines) + "\n")

    def spawn(self, code: str) -> threading.Thread:
        clone = Interpreter(
            debug=self.debug,
            env=self.env.clone(),
            input_provider=self.input_provider,
            output_sink=self.output_sink,
            argv=self.argv,
        )
        thread = _start_thread(clone._run_detached, code, daemon=True)
        self.threads = [t for t in self.threads if t.is_alive()]
        self.threads.append(thread)
        return thread

    def run(self, code: str) -> None:
        """Evaluate ``code`` on a worker thread with room for deep recursion.

        Blocks until the program finishes. An ``ExitSignal`` raised by the
        program is re-raised in the calling thread.
        """
        failures: List[BaseException] = []

        def _target() -> None:
            try:
                self.evaluate_program(code)
            except BaseException as exc:
                failures.append(exc)

        if sys.getrecursionlimit() < RECURSION_LIMIT:
            sys.setrecursionlimit(RECURSION_LIMIT)
        _start_thread(_target, daemon=False).join()
        if failures:
            raise failures[0]

    def _run_detached(self, code: str) -> None:
        try:
            self.evaluate_program(code)
        except ExitSignal as sig:
            # Only the spawned copy stops; the spawning interpreter keeps running.
            self.logger.diagnostic(f"exit {sig.code} ended a thread")

    def _log_step(self, token: str) -> Optional[StateEntry]:
        return self.logger.record(depth=self.depth, token=token, stack=self.show_stack)
