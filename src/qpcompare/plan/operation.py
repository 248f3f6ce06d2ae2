"""
Subgraph operation normalization.

A Fetch node carries the GraphQL operation it sends to its subgraph. Two
planners may render semantically identical operations differently: field
order, argument order, object-literal key order, whitespace, the
`query { }` vs `{ }` shorthand, or variable names. NormalizedOperation
keeps the raw text and, once canonicalized, a compact canonical text that
is what comparisons use.

Normalization (applied by `normalize_operation`):
- fields sorted by (name, serialized arguments, alias)
- inline fragments and fragment spreads sorted after fields
- field arguments sorted by name, object-literal keys sorted recursively
- fragment definitions sorted by name, placed after operations
- variable definitions sorted by (name length, name), so $v2 < $v10
- compact single-line printing
- optional: named fragments inlined as inline fragments
- variables renamed to positional names ($v0, $v1, ...) only when they
  are interchangeable (see `_variables_interchangeable`)

Directive arguments keep their order. List values keep their order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from graphql import GraphQLError, parse, print_ast
from graphql.language import (
    ArgumentNode,
    BooleanValueNode,
    DirectiveNode,
    DocumentNode,
    EnumValueNode,
    FieldNode,
    FloatValueNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    IntValueNode,
    ListTypeNode,
    ListValueNode,
    NamedTypeNode,
    NonNullTypeNode,
    NullValueNode,
    ObjectValueNode,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    StringValueNode,
    TypeNode,
    ValueNode,
    VariableNode,
    Visitor,
    visit,
)

logger = logging.getLogger(__name__)

POSITIONAL_PREFIX = "v"


@dataclass(frozen=True, eq=False)
class NormalizedOperation:
    """
    A subgraph operation body plus its variable definitions.

    Compared by `text`: the canonical form once canonicalized, the raw
    text otherwise.

    Attributes:
        raw: Operation text as emitted by the planner.
        canonical: Canonical compact text (None until canonicalized).
        parsed: Whether the text parsed as GraphQL.
        positional_variables: Whether variables were renamed positionally.
    """

    raw: str
    canonical: str | None = None
    parsed: bool = True
    positional_variables: bool = False

    @property
    def text(self) -> str:
        return self.canonical if self.canonical is not None else self.raw

    @property
    def is_canonical(self) -> bool:
        return self.canonical is not None

    def pretty(self) -> str:
        """Multi-line rendering of `text` for human-readable diffs."""
        if not self.parsed:
            return self.text
        try:
            return print_ast(parse(self.text, no_location=True))
        except GraphQLError:
            return self.text

    def __eq__(self, other: object) -> bool:
        if isinstance(other, NormalizedOperation):
            return self.text == other.text
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.text)

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"NormalizedOperation({self.text!r})"


# =============================================================================
# Public entry point
# =============================================================================


def normalize_operation(
    operation: NormalizedOperation | str,
    variables_used: Iterable[str] | None = None,
    *,
    positional_variables: bool = True,
    inline_fragments: bool = False,
) -> NormalizedOperation:
    """
    Produce the canonical form of a subgraph operation.

    Never raises: text that does not parse as GraphQL keeps its raw form
    with whitespace runs collapsed, and is compared as such.

    Args:
        operation: Operation (or raw text) to normalize.
        variables_used: The Fetch node's declared variable usages; when
            given, positional renaming additionally requires them to match
            the operation's declared variables.
        positional_variables: Allow positional renaming of variables.
        inline_fragments: Replace named fragment spreads with inline
            fragments and drop the fragment definitions.

    Returns:
        A NormalizedOperation whose `canonical` text is set.
    """
    if isinstance(operation, NormalizedOperation):
        source = operation.text
        raw = operation.raw
    else:
        source = raw = operation

    try:
        document = parse(source, no_location=True)
    except GraphQLError as e:
        logger.debug("Operation did not parse, comparing collapsed text: %s", e.message)
        return NormalizedOperation(
            raw=raw,
            canonical=" ".join(source.split()),
            parsed=False,
        )

    fragments = _fragment_map(document) if inline_fragments else {}

    identity = _Printer(renames={}, fragments=fragments)
    first_pass = identity.document(document)

    renames: dict[str, str] = {}
    if positional_variables and _variables_interchangeable(document, variables_used):
        order = _dedupe(first_pass.variables)
        renames = {name: f"{POSITIONAL_PREFIX}{i}" for i, name in enumerate(order)}

    if renames:
        canonical = _Printer(renames=renames, fragments=fragments).document(document).text
    else:
        canonical = first_pass.text

    return NormalizedOperation(
        raw=raw,
        canonical=canonical,
        parsed=True,
        positional_variables=bool(renames),
    )


# =============================================================================
# Variable analysis
# =============================================================================


class _VariableCollector(Visitor):
    """Collect declared variables and variable references."""

    def __init__(self) -> None:
        super().__init__()
        self.declared: list[str] = []
        self.referenced: set[str] = set()
        self.in_directives: set[str] = set()
        self._directive_depth = 0
        self._definition_depth = 0

    def enter_variable_definition(self, node, *_args):
        self.declared.append(node.variable.name.value)
        self._definition_depth += 1

    def leave_variable_definition(self, node, *_args):
        self._definition_depth -= 1

    def enter_directive(self, node, *_args):
        self._directive_depth += 1

    def leave_directive(self, node, *_args):
        self._directive_depth -= 1

    def enter_variable(self, node, *_args):
        if self._definition_depth:
            return
        name = node.name.value
        self.referenced.add(name)
        if self._directive_depth:
            self.in_directives.add(name)


def _variables_interchangeable(
    document: DocumentNode,
    variables_used: Iterable[str] | None,
) -> bool:
    """
    Whether variable names carry no meaning beyond their positions.

    True only when the document holds a single operation, every declared
    variable is referenced and vice versa, no variable is declared twice,
    no variable feeds a directive (directive variables tie the operation
    to Condition nodes and runtime skip/include decisions), and the fetch's
    `variables_used` (when given) names exactly the declared variables.
    """
    operations = [
        d for d in document.definitions if isinstance(d, OperationDefinitionNode)
    ]
    if len(operations) != 1:
        return False

    collector = _VariableCollector()
    visit(document, collector)

    declared = set(collector.declared)
    if not declared:
        return False
    if len(declared) != len(collector.declared):
        return False
    if declared != collector.referenced:
        return False
    if collector.in_directives:
        return False
    if variables_used is not None and set(variables_used) != declared:
        return False
    return True


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        seen.setdefault(name, None)
    return list(seen)


def _fragment_map(document: DocumentNode) -> dict[str, FragmentDefinitionNode]:
    return {
        d.name.value: d
        for d in document.definitions
        if isinstance(d, FragmentDefinitionNode)
    }


# =============================================================================
# Canonical printer
# =============================================================================


class _Out(NamedTuple):
    """
    Printed fragment of a document.

    `masked` prints every variable reference as a bare '$' so sort keys do
    not depend on variable names. `variables` lists referenced variables in
    emission order.
    """

    text: str
    masked: str
    variables: tuple[str, ...] = ()


def _join(parts: list[_Out], sep: str) -> _Out:
    return _Out(
        text=sep.join(p.text for p in parts),
        masked=sep.join(p.masked for p in parts),
        variables=tuple(v for p in parts for v in p.variables),
    )


def _wrap(prefix: str, inner: _Out, suffix: str) -> _Out:
    return _Out(prefix + inner.text + suffix, prefix + inner.masked + suffix, inner.variables)


def _plain(text: str) -> _Out:
    return _Out(text, text)


@dataclass
class _Printer:
    renames: dict[str, str]
    fragments: dict[str, FragmentDefinitionNode] = field(default_factory=dict)
    _expanding: list[str] = field(default_factory=list)

    # -- documents ----------------------------------------------------------

    def document(self, document: DocumentNode) -> _Out:
        operations: list[_Out] = []
        fragments: list[tuple[str, _Out]] = []
        for definition in document.definitions:
            if isinstance(definition, OperationDefinitionNode):
                operations.append(self.operation(definition))
            elif isinstance(definition, FragmentDefinitionNode):
                if self.fragments:
                    continue
                fragments.append((definition.name.value, self.fragment_definition(definition)))
        fragments.sort(key=lambda item: item[0])
        return _join(operations + [out for _, out in fragments], " ")

    def operation(self, node: OperationDefinitionNode) -> _Out:
        name = node.name.value if node.name else ""
        var_defs = sorted(
            (self.variable_definition(v) for v in node.variable_definitions or ()),
            key=lambda out: _positional_sort_key(out.text),
        )
        directives = self.directives(node.directives)
        selection_set = self.selection_set(node.selection_set)

        shorthand = (
            node.operation == OperationType.QUERY
            and not name
            and not var_defs
            and not directives.text
        )
        if shorthand:
            return selection_set

        head = node.operation.value
        if name:
            head += f" {name}"
        parts = [_plain(head)]
        if var_defs:
            parts = [_join([parts[0], _wrap("(", _join(var_defs, ", "), ")")], "")]
        if directives.text:
            parts.append(directives)
        parts.append(selection_set)
        return _join(parts, " ")

    def fragment_definition(self, node: FragmentDefinitionNode) -> _Out:
        head = _plain(f"fragment {node.name.value} on {node.type_condition.name.value}")
        parts = [head]
        directives = self.directives(node.directives)
        if directives.text:
            parts.append(directives)
        parts.append(self.selection_set(node.selection_set))
        return _join(parts, " ")

    def variable_definition(self, node) -> _Out:
        text = f"${self._rename(node.variable.name.value)}: {_type(node.type)}"
        out = _plain(text)
        if node.default_value is not None:
            out = _join([out, _wrap("= ", self.value(node.default_value), "")], " ")
        directives = self.directives(node.directives)
        if directives.text:
            out = _join([out, directives], " ")
        return out

    # -- selections ---------------------------------------------------------

    def selection_set(self, node: SelectionSetNode | None) -> _Out:
        if node is None or not node.selections:
            return _plain("")
        printed: list[tuple[tuple, _Out]] = []
        for selection in node.selections:
            if isinstance(selection, FieldNode):
                out, key = self.field(selection)
            elif isinstance(selection, InlineFragmentNode):
                out = self.inline_fragment(selection)
                key = (1, out.masked)
            elif isinstance(selection, FragmentSpreadNode):
                out = self.fragment_spread(selection)
                key = (2, out.masked)
            else:
                out = _plain(str(selection))
                key = (3, out.masked)
            printed.append(((key, out.text), out))
        printed.sort(key=lambda item: item[0])
        return _wrap("{ ", _join([out for _, out in printed], " "), " }")

    def field(self, node: FieldNode) -> tuple[_Out, tuple]:
        name = node.name.value
        alias = node.alias.value if node.alias else ""
        arguments = self.arguments(node.arguments)

        head = f"{alias}: {name}" if alias else name
        parts = [_join([_plain(head), arguments], "")]
        directives = self.directives(node.directives)
        if directives.text:
            parts.append(directives)
        if node.selection_set is not None:
            parts.append(self.selection_set(node.selection_set))
        out = _join(parts, " ")
        return out, (0, name, arguments.masked, alias, out.masked)

    def inline_fragment(self, node: InlineFragmentNode) -> _Out:
        head = "..."
        if node.type_condition is not None:
            head += f" on {node.type_condition.name.value}"
        parts = [_plain(head)]
        directives = self.directives(node.directives)
        if directives.text:
            parts.append(directives)
        parts.append(self.selection_set(node.selection_set))
        return _join(parts, " ")

    def fragment_spread(self, node: FragmentSpreadNode) -> _Out:
        name = node.name.value
        definition = self.fragments.get(name)
        if definition is not None and name not in self._expanding:
            self._expanding.append(name)
            try:
                head = f"... on {definition.type_condition.name.value}"
                parts = [_plain(head)]
                directives = self.directives(node.directives)
                if directives.text:
                    parts.append(directives)
                parts.append(self.selection_set(definition.selection_set))
                return _join(parts, " ")
            finally:
                self._expanding.pop()

        parts = [_plain(f"...{name}")]
        directives = self.directives(node.directives)
        if directives.text:
            parts.append(directives)
        return _join(parts, " ")

    # -- arguments and directives --------------------------------------------

    def arguments(self, arguments: Iterable[ArgumentNode] | None) -> _Out:
        if not arguments:
            return _plain("")
        printed = sorted(
            (self.argument(a) for a in arguments),
            key=lambda item: item[0],
        )
        return _wrap("(", _join([out for _, out in printed], ", "), ")")

    def argument(self, node: ArgumentNode) -> tuple[str, _Out]:
        name = node.name.value
        return name, _wrap(f"{name}: ", self.value(node.value), "")

    def directives(self, directives: Iterable[DirectiveNode] | None) -> _Out:
        if not directives:
            return _plain("")
        printed = []
        for directive in directives:
            head = _plain(f"@{directive.name.value}")
            if directive.arguments:
                # directive argument order is kept as emitted
                args = [self.argument(a)[1] for a in directive.arguments]
                head = _join([head, _wrap("(", _join(args, ", "), ")")], "")
            printed.append(head)
        return _join(printed, " ")

    # -- values -------------------------------------------------------------

    def value(self, node: ValueNode) -> _Out:
        if isinstance(node, VariableNode):
            name = node.name.value
            return _Out(f"${self._rename(name)}", "$", (name,))
        if isinstance(node, (IntValueNode, FloatValueNode, EnumValueNode)):
            return _plain(node.value)
        if isinstance(node, StringValueNode):
            return _plain(json.dumps(node.value, ensure_ascii=False))
        if isinstance(node, BooleanValueNode):
            return _plain("true" if node.value else "false")
        if isinstance(node, NullValueNode):
            return _plain("null")
        if isinstance(node, ListValueNode):
            return _wrap("[", _join([self.value(v) for v in node.values], ", "), "]")
        if isinstance(node, ObjectValueNode):
            fields = sorted(
                ((f.name.value, _wrap(f"{f.name.value}: ", self.value(f.value), "")) for f in node.fields),
                key=lambda item: item[0],
            )
            return _wrap("{", _join([out for _, out in fields], ", "), "}")
        return _plain(str(node))

    def _rename(self, name: str) -> str:
        return self.renames.get(name, name)


def _type(node: TypeNode) -> str:
    if isinstance(node, NonNullTypeNode):
        return f"{_type(node.type)}!"
    if isinstance(node, ListTypeNode):
        return f"[{_type(node.type)}]"
    if isinstance(node, NamedTypeNode):
        return node.name.value
    return str(node)


def _positional_sort_key(definition: str) -> tuple[int, str]:
    """Sort '$v10' after '$v2'; plain names sort by length then text."""
    name = definition.split(":", 1)[0].lstrip("$")
    return (len(name), name)
