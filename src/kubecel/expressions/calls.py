"""CEL mappings for calls: global coercions, ``Math`` helpers and methods.

Each table entry knows its accepted arity and how to emit the CEL form.
Anything not listed here, or called with a different number of
arguments, is rejected by the converter with ``UnsupportedSyntax``.

    Number(x)            double(x)
    Math.max(a, b)       a > b ? a : b
    s.toUpperCase()      s.upperAscii()
    list.some(x => p)    list.exists(x, p)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from kubecel.expressions.markers import CelType
from kubecel.expressions.nodes import Node
from kubecel.expressions.precedence import (
    TERNARY_PRECEDENCE,
    expression_precedence,
    wrap_branch,
    wrap_if_compound,
    wrap_operand,
)

__all__ = [
    "Emitted",
    "CallSite",
    "FunctionSpec",
    "GLOBAL_FUNCTIONS",
    "MATH_FUNCTIONS",
    "METHODS",
    "arity_matches",
]


@dataclass(frozen=True, slots=True)
class Emitted:
    """CEL text for one converted node plus what the parent needs to know.

    Attributes:
        text: CEL source for the node.
        type_hint: Best-effort result type.
        marker: The node is a bare resource/schema reference.
        boolean: The node is a comparison, negation, logical or predicate
            result, so it is already a CEL bool.
    """

    text: str
    type_hint: CelType = CelType.DYN
    marker: bool = False
    boolean: bool = False


class CallSite(Protocol):
    """What call emitters need from the converter."""

    def emit(self, node: Node) -> Emitted: ...

    def emit_callback(self, node: Node, method: str) -> tuple[str, Emitted]: ...


# (site, receiver, joiner, arguments) -> Emitted; receiver/joiner are unused for
# global and Math functions.
Emitter = Callable[[CallSite, Emitted | None, str, Sequence[Node]], Emitted]


@dataclass(frozen=True, slots=True)
class FunctionSpec:
    name: str
    min_args: int
    max_args: int | None
    emit: Emitter

    @property
    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args}-{self.max_args}"


def arity_matches(spec: FunctionSpec, count: int) -> bool:
    if count < spec.min_args:
        return False
    return spec.max_args is None or count <= spec.max_args


def _args(site: CallSite, arguments: Sequence[Node]) -> list[Emitted]:
    return [site.emit(arg) for arg in arguments]


def _join(values: Sequence[Emitted]) -> str:
    return ", ".join(v.text for v in values)


def _cast(function: str, result: CelType, *, boolean: bool = False) -> Emitter:
    def emit(site: CallSite, _: Emitted | None, __: str, arguments: Sequence[Node]) -> Emitted:
        value = site.emit(arguments[0])
        return Emitted(f"{function}({value.text})", result, boolean=boolean)

    return emit


GLOBAL_FUNCTIONS: dict[str, FunctionSpec] = {
    "Number": FunctionSpec("Number", 1, 1, _cast("double", CelType.NUMBER)),
    "String": FunctionSpec("String", 1, 1, _cast("string", CelType.STRING)),
    "Boolean": FunctionSpec("Boolean", 1, 1, _cast("bool", CelType.BOOL, boolean=True)),
    "parseInt": FunctionSpec("parseInt", 1, None, _cast("int", CelType.NUMBER)),
    "parseFloat": FunctionSpec("parseFloat", 1, None, _cast("double", CelType.NUMBER)),
}


def _extremum(comparison: str) -> Emitter:
    def emit(site: CallSite, _: Emitted | None, __: str, arguments: Sequence[Node]) -> Emitted:
        values = _args(site, arguments)
        result = values[0].text
        for value in values[1:]:
            current = f"({result})" if expression_precedence(result) <= TERNARY_PRECEDENCE else result
            left = wrap_operand(current, comparison)
            right = wrap_operand(value.text, comparison, right=True)
            consequent = current
            result = f"{left} {comparison} {right} ? {consequent} : {wrap_operand(value.text, '?')}"
        return Emitted(result, CelType.NUMBER)

    return emit


def _abs(site: CallSite, _: Emitted | None, __: str, arguments: Sequence[Node]) -> Emitted:
    value = wrap_if_compound(site.emit(arguments[0]).text)
    return Emitted(f"{value} < 0 ? -{value} : {value}", CelType.NUMBER)


def _rounding(offset: str | None) -> Emitter:
    def emit(site: CallSite, _: Emitted | None, __: str, arguments: Sequence[Node]) -> Emitted:
        value = site.emit(arguments[0]).text
        if offset is None:
            return Emitted(f"int({value})", CelType.NUMBER)
        return Emitted(f"int({wrap_operand(value, '+')} + {offset})", CelType.NUMBER)

    return emit


MATH_FUNCTIONS: dict[str, FunctionSpec] = {
    "min": FunctionSpec("Math.min", 1, None, _extremum("<")),
    "max": FunctionSpec("Math.max", 1, None, _extremum(">")),
    "abs": FunctionSpec("Math.abs", 1, 1, _abs),
    "floor": FunctionSpec("Math.floor", 1, 1, _rounding(None)),
    "ceil": FunctionSpec("Math.ceil", 1, 1, _rounding("0.999999")),
    "round": FunctionSpec("Math.round", 1, 1, _rounding("0.5")),
}


def _receiver(receiver: Emitted | None) -> str:
    if receiver is None:
        raise ValueError("method emitter called without a receiver")
    return wrap_if_compound(receiver.text)


def _macro(cel_name: str, result: CelType, *, suffix: str = "", boolean: bool = False, js_name: str = "") -> Emitter:
    def emit(site: CallSite, receiver: Emitted | None, joiner: str, arguments: Sequence[Node]) -> Emitted:
        base = _receiver(receiver)
        param, body = site.emit_callback(arguments[0], js_name or cel_name)
        text = f"{base}{joiner}{cel_name}({param}, {body.text}){suffix}"
        return Emitted(text, result, boolean=boolean)

    return emit


def _method(cel_name: str, result: CelType, *, boolean: bool = False) -> Emitter:
    def emit(site: CallSite, receiver: Emitted | None, joiner: str, arguments: Sequence[Node]) -> Emitted:
        base = _receiver(receiver)
        text = f"{base}{joiner}{cel_name}({_join(_args(site, arguments))})"
        return Emitted(text, result, boolean=boolean)

    return emit


def _size(site: CallSite, receiver: Emitted | None, _: str, __: Sequence[Node]) -> Emitted:
    if receiver is None:
        raise ValueError("method emitter called without a receiver")
    return Emitted(f"size({receiver.text})", CelType.NUMBER)


def _pad(at_start: bool) -> Emitter:
    def emit(site: CallSite, receiver: Emitted | None, _: str, arguments: Sequence[Node]) -> Emitted:
        if receiver is None:
            raise ValueError("method emitter called without a receiver")
        values = _args(site, arguments)
        target = values[0].text
        pad = wrap_if_compound(values[1].text) if len(values) > 1 else '" "'
        size = f"size({receiver.text})"
        filler = f"{pad}.repeat({wrap_operand(target, '-')} - {size})"
        value = wrap_operand(receiver.text, "+", right=at_start)
        padded = f"{filler} + {value}" if at_start else f"{value} + {filler}"
        text = f"{size} >= {wrap_operand(target, '>=', right=True)} ? {wrap_branch(receiver.text)} : ({padded})"
        return Emitted(text, CelType.STRING)

    return emit


def _index_of(last: bool) -> Emitter:
    def emit(site: CallSite, receiver: Emitted | None, joiner: str, arguments: Sequence[Node]) -> Emitted:
        base = _receiver(receiver)
        needle = site.emit(arguments[0]).text
        found = "0"
        if last:
            found = f"size({base}) - size({needle})"
        return Emitted(f"{base}{joiner}contains({needle}) ? {found} : -1", CelType.NUMBER)

    return emit


METHODS: dict[str, FunctionSpec] = {
    "find": FunctionSpec("find", 1, 1, _macro("filter", CelType.DYN, suffix="[0]", js_name="find")),
    "filter": FunctionSpec("filter", 1, 1, _macro("filter", CelType.LIST)),
    "map": FunctionSpec("map", 1, 1, _macro("map", CelType.LIST)),
    "some": FunctionSpec("some", 1, 1, _macro("exists", CelType.BOOL, boolean=True, js_name="some")),
    "every": FunctionSpec("every", 1, 1, _macro("all", CelType.BOOL, boolean=True, js_name="every")),
    "flatMap": FunctionSpec("flatMap", 1, 1, _macro("map", CelType.LIST, suffix=".flatten()", js_name="flatMap")),
    "includes": FunctionSpec("includes", 1, 1, _method("contains", CelType.BOOL, boolean=True)),
    "startsWith": FunctionSpec("startsWith", 1, 1, _method("startsWith", CelType.BOOL, boolean=True)),
    "endsWith": FunctionSpec("endsWith", 1, 1, _method("endsWith", CelType.BOOL, boolean=True)),
    "toLowerCase": FunctionSpec("toLowerCase", 0, 0, _method("lowerAscii", CelType.STRING)),
    "toUpperCase": FunctionSpec("toUpperCase", 0, 0, _method("upperAscii", CelType.STRING)),
    "trim": FunctionSpec("trim", 0, 0, _method("trim", CelType.STRING)),
    "substring": FunctionSpec("substring", 1, 2, _method("substring", CelType.STRING)),
    "slice": FunctionSpec("slice", 1, 2, _method("substring", CelType.STRING)),
    "split": FunctionSpec("split", 1, 1, _method("split", CelType.LIST)),
    "join": FunctionSpec("join", 1, 1, _method("join", CelType.STRING)),
    "repeat": FunctionSpec("repeat", 1, 1, _method("repeat", CelType.STRING)),
    "replace": FunctionSpec("replace", 2, 2, _method("replace", CelType.STRING)),
    "length": FunctionSpec("length", 0, 0, _size),
    "padStart": FunctionSpec("padStart", 1, 2, _pad(at_start=True)),
    "padEnd": FunctionSpec("padEnd", 1, 2, _pad(at_start=False)),
    "indexOf": FunctionSpec("indexOf", 1, 1, _index_of(last=False)),
    "lastIndexOf": FunctionSpec("lastIndexOf", 1, 1, _index_of(last=True)),
}
