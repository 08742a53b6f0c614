"""AST node types produced by :mod:`kubecel.expressions.parser`.

Node class names follow the ESTree vocabulary (``MemberExpression``,
``CallExpression`` ...) because that is what users see in unsupported-syntax
diagnostics. Every node is an immutable, slotted dataclass; spans are
excluded from equality so structurally identical trees compare equal.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, fields

__all__ = [
    "Span",
    "Node",
    "Identifier",
    "Literal",
    "TemplateLiteral",
    "ArrayExpression",
    "SpreadElement",
    "Property",
    "ObjectExpression",
    "MemberExpression",
    "CallExpression",
    "UnaryExpression",
    "BinaryExpression",
    "LogicalExpression",
    "ConditionalExpression",
    "SequenceExpression",
    "ArrowFunctionExpression",
    "BlockStatement",
    "ReturnStatement",
    "VariableDeclaration",
    "ExpressionStatement",
    "Program",
    "iter_children",
    "count_nodes",
]


@dataclass(frozen=True, slots=True)
class Span:
    """Location of a node in the user's source text.

    Attributes:
        start: Offset of the first character.
        end: Offset one past the last character.
        line: 1-indexed line of the first character.
        column: 0-indexed column of the first character.
    """

    start: int
    end: int
    line: int = 1
    column: int = 0

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class Node:
    span: Span | None = field(default=None, compare=False, kw_only=True)

    @property
    def node_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class Identifier(Node):
    name: str


@dataclass(frozen=True, slots=True)
class Literal(Node):
    """String, number, boolean, ``null`` or ``undefined`` literal.

    ``raw`` keeps the source spelling so numbers round-trip unchanged.
    """

    value: str | int | float | bool | None
    raw: str


@dataclass(frozen=True, slots=True)
class TemplateLiteral(Node):
    """Backtick string; ``len(quasis) == len(expressions) + 1``."""

    quasis: tuple[str, ...]
    expressions: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ArrayExpression(Node):
    elements: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class SpreadElement(Node):
    argument: Node


@dataclass(frozen=True, slots=True)
class Property(Node):
    key: Node
    value: Node
    computed: bool = False
    shorthand: bool = False

    @property
    def key_name(self) -> str | None:
        """Static key as a string, or ``None`` for computed keys."""
        if self.computed:
            return None
        if isinstance(self.key, Identifier):
            return self.key.name
        if isinstance(self.key, Literal):
            return str(self.key.value)
        return None


@dataclass(frozen=True, slots=True)
class ObjectExpression(Node):
    properties: tuple[Property | SpreadElement, ...]


@dataclass(frozen=True, slots=True)
class MemberExpression(Node):
    object: Node
    property: Node
    computed: bool = False
    optional: bool = False


@dataclass(frozen=True, slots=True)
class CallExpression(Node):
    callee: Node
    arguments: tuple[Node, ...]
    optional: bool = False


@dataclass(frozen=True, slots=True)
class UnaryExpression(Node):
    operator: str
    argument: Node


@dataclass(frozen=True, slots=True)
class BinaryExpression(Node):
    operator: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class LogicalExpression(Node):
    """``&&``, ``||`` and ``??``."""

    operator: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class ConditionalExpression(Node):
    test: Node
    consequent: Node
    alternate: Node


@dataclass(frozen=True, slots=True)
class SequenceExpression(Node):
    expressions: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class BlockStatement(Node):
    body: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ArrowFunctionExpression(Node):
    params: tuple[str, ...]
    body: Node

    @property
    def expression_body(self) -> Node | None:
        """The returned expression, for expression bodies and single-return blocks."""
        if not isinstance(self.body, BlockStatement):
            return self.body
        returns = [s for s in self.body.body if isinstance(s, ReturnStatement)]
        if len(self.body.body) == 1 and len(returns) == 1:
            return returns[0].argument
        return None


@dataclass(frozen=True, slots=True)
class ReturnStatement(Node):
    argument: Node | None


@dataclass(frozen=True, slots=True)
class VariableDeclaration(Node):
    kind: str
    name: str
    init: Node


@dataclass(frozen=True, slots=True)
class ExpressionStatement(Node):
    expression: Node


@dataclass(frozen=True, slots=True)
class Program(Node):
    body: tuple[Node, ...]


def iter_children(node: Node) -> Iterator[Node]:
    """Yield the direct child nodes of ``node`` in source order."""
    for f in fields(node):
        if f.name == "span":
            continue
        value = getattr(node, f.name)
        if isinstance(value, Node):
            yield value
        elif isinstance(value, tuple):
            for item in value:
                if isinstance(item, Node):
                    yield item


def count_nodes(node: Node) -> int:
    """Total number of nodes in the tree rooted at ``node``."""
    total = 0
    stack = [node]
    while stack:
        current = stack.pop()
        total += 1
        stack.extend(iter_children(current))
    return total
