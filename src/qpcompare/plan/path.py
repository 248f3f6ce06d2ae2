"""
Result paths and field paths.

A ResultPath addresses a position in the response tree of a federated
operation. It appears on Flatten nodes, on deferred parts and in data
rewrites. Elements use the router's string conventions:

    "products"            key
    "products|[Book]"     key restricted to type conditions
    3                     list index
    "@"                   flatten (apply to every list element)
    "@|[Book,Movie]"      flatten restricted to type conditions
    "... on Book"         fragment application

A FieldPath addresses one required field inside a Fetch's `requires`
selection: a sequence of response names and "... on T" segments.

Both are value types: two paths are equal iff their elements are equal
element-wise.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator, Union

FRAGMENT_PREFIX = "... on "

_TYPE_CONDITIONS = re.compile(r"\|\[(?P<condition>.+?)?\]")


def _split_type_conditions(raw: str) -> tuple[str, tuple[str, ...] | None]:
    """Split 'name|[A,B]' into ('name', ('A', 'B')); 'name|[]' has no conditions."""
    conditions: tuple[str, ...] | None = None
    match = _TYPE_CONDITIONS.search(raw)
    if match:
        group = match.group("condition")
        conditions = tuple(group.split(",")) if group else None
        raw = raw[: match.start()] + raw[match.end():]
    return raw, conditions


def _format_type_conditions(conditions: tuple[str, ...] | None) -> str:
    if not conditions:
        return ""
    return f"|[{','.join(conditions)}]"


@dataclass(frozen=True)
class KeyElement:
    """A response key, optionally restricted to type conditions."""

    key: str
    type_conditions: tuple[str, ...] | None = None

    def __str__(self) -> str:
        return f"{self.key}{_format_type_conditions(self.type_conditions)}"


@dataclass(frozen=True)
class IndexElement:
    """A list index."""

    index: int

    def __str__(self) -> str:
        return str(self.index)


@dataclass(frozen=True)
class FlattenElement:
    """Flat-map over a list ('@'), optionally restricted to type conditions."""

    type_conditions: tuple[str, ...] | None = None

    def __str__(self) -> str:
        return f"@{_format_type_conditions(self.type_conditions)}"


@dataclass(frozen=True)
class FragmentElement:
    """A fragment application ('... on T')."""

    type_name: str

    def __str__(self) -> str:
        return f"{FRAGMENT_PREFIX}{self.type_name}"


PathElement = Union[KeyElement, IndexElement, FlattenElement, FragmentElement]


def parse_element(raw: str | int) -> PathElement:
    """
    Parse a single path element from its JSON representation.

    Raises:
        ValueError: If the element is neither a string nor an integer.
    """
    if isinstance(raw, bool):
        raise ValueError(f"Invalid path element: {raw!r}")
    if isinstance(raw, int):
        return IndexElement(raw)
    if not isinstance(raw, str):
        raise ValueError(f"Invalid path element: {raw!r}")

    if raw.startswith(FRAGMENT_PREFIX):
        return FragmentElement(raw[len(FRAGMENT_PREFIX):])

    name, conditions = _split_type_conditions(raw)
    if name == "@":
        return FlattenElement(conditions)
    return KeyElement(name, conditions)


def element_to_json(element: PathElement) -> str | int:
    """Inverse of parse_element."""
    if isinstance(element, IndexElement):
        return element.index
    return str(element)


@dataclass(frozen=True)
class ResultPath:
    """
    A path into the result document.

    Example:
        path = ResultPath.parse(["products", "@", "reviews"])
        str(path)   # "products/@/reviews"
    """

    elements: tuple[PathElement, ...] = ()

    @classmethod
    def parse(cls, raw: list[Any] | tuple[Any, ...] | None) -> "ResultPath":
        if not raw:
            return cls()
        return cls(tuple(parse_element(item) for item in raw))

    def to_json(self) -> list[str | int]:
        return [element_to_json(e) for e in self.elements]

    def __iter__(self) -> Iterator[PathElement]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def __str__(self) -> str:
        return "/".join(str(e) for e in self.elements)


@dataclass(frozen=True, order=True)
class FieldPath:
    """
    Path to one required field, e.g. ("... on Product", "id").

    Ordered so sets of field paths sort deterministically.
    """

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, dotted: str) -> "FieldPath":
        """Parse 'a/b/c' into a FieldPath."""
        return cls(tuple(s for s in dotted.split("/") if s))

    def child(self, segment: str) -> "FieldPath":
        return FieldPath(self.segments + (segment,))

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return "/".join(self.segments)


def flatten_requires(selections: list[dict[str, Any]] | None) -> frozenset[FieldPath]:
    """
    Flatten the router's `requires` selection tree into leaf field paths.

    Each selection is either {"kind": "Field", "name", "alias"?,
    "selections"?} or {"kind": "InlineFragment", "typeCondition"?,
    "selections"}. A field with sub-selections contributes the paths of
    its leaves; a leaf field contributes its own path.

    Raises:
        ValueError: On selections of an unknown kind, or fields without
            a name.
    """
    result: set[FieldPath] = set()
    _collect_leaves(selections or [], FieldPath(()), result)
    return frozenset(result)


def _collect_leaves(
    selections: list[dict[str, Any]],
    prefix: FieldPath,
    out: set[FieldPath],
) -> None:
    for selection in selections:
        if not isinstance(selection, dict):
            raise ValueError(f"Expected a selection object in requires, got {type(selection).__name__}")
        kind = selection.get("kind")
        if kind == "Field":
            name = selection.get("alias") or selection.get("name")
            if not isinstance(name, str) or not name:
                raise ValueError("Field selection in requires has no name")
            path = prefix.child(name)
            children = selection.get("selections")
            if children:
                _collect_leaves(children, path, out)
            else:
                out.add(path)
        elif kind == "InlineFragment":
            type_condition = selection.get("typeCondition")
            path = prefix.child(f"{FRAGMENT_PREFIX}{type_condition}") if type_condition else prefix
            children = selection.get("selections") or []
            if children:
                _collect_leaves(children, path, out)
            else:
                out.add(path)
        else:
            raise ValueError(f"Unknown selection kind in requires: {kind!r}")
