"""
Hierarchical state documents used to persist and restore priors.

Priors only ever talk to the abstract cursors defined here:

- :class:`StateWriter`: ``open_level(name)``, ``insert_value(name, value)``
  and ``close_level()`` build an ordered tree of named values.
- :class:`StateReader`: a cursor positioned on one node of a level, with
  ``next()`` to move to the following sibling and ``traverse_sub_level``
  to run a function on the children of the current node.

:class:`DocumentWriter` and :class:`DocumentReader` implement the cursors
over an in-memory tree of :class:`StateNode` which converts to and from
JSON text. Leaf values are always strings; floats are written with
``repr`` so that they round-trip exactly.

Examples
--------
>>> writer = DocumentWriter()
>>> writer.insert_value("decay_rate", 0.001)
>>> with writer.level("candidate"):
...     writer.insert_value("type", "normal")
>>> reader = DocumentReader.from_json(writer.to_json())
>>> [node.name for node in reader]
['decay_rate', 'candidate']
"""

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, TypeVar

import numpy as np
from numpy.typing import ArrayLike, NDArray

from oneofn.exceptions import RestoreError

T = TypeVar("T")


@dataclass
class StateNode:
    """One named node of a state document: a leaf value or a sub level."""

    name: str
    value: str = ""
    children: Optional[List["StateNode"]] = None

    @property
    def is_level(self) -> bool:
        return self.children is not None

    def to_dict(self) -> dict:
        if self.is_level:
            return {"name": self.name, "children": [c.to_dict() for c in self.children]}
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> "StateNode":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise RestoreError(f"Malformed state node: {data!r}")
        if "children" in data:
            children = data["children"]
            if not isinstance(children, list):
                raise RestoreError(f"Malformed children of {data['name']!r}")
            return cls(data["name"], children=[cls.from_dict(c) for c in children])
        value = data.get("value")
        if not isinstance(value, str):
            raise RestoreError(f"Malformed value of {data['name']!r}: {value!r}")
        return cls(data["name"], value=value)


def format_value(value: Any) -> str:
    """Convert a scalar to its persisted string form."""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    return repr(float(value))


def array_to_string(values: ArrayLike) -> str:
    """Persist a numeric array as space separated floats (row-major)."""
    return " ".join(repr(float(v)) for v in np.asarray(values, dtype=float).ravel())


def string_to_array(text: str, shape: Optional[tuple] = None) -> NDArray:
    """
    Parse the output of :func:`array_to_string`.

    Raises
    ------
    RestoreError
        If the text is not a list of floats or does not fit ``shape``.
    """
    try:
        values = np.array([float(token) for token in text.split()], dtype=float)
    except ValueError:
        raise RestoreError(f"Invalid numeric array {text!r}")
    if shape is not None:
        if values.size != int(np.prod(shape)):
            raise RestoreError(f"Expected {int(np.prod(shape))} values, got {values.size}")
        values = values.reshape(shape)
    return values


def parse_float(text: str, name: str) -> float:
    """Parse a persisted float, raising :class:`RestoreError` on failure."""
    try:
        return float(text)
    except ValueError:
        raise RestoreError(f"Invalid value for {name!r}: {text!r}")


def parse_int(text: str, name: str) -> int:
    """Parse a persisted integer, raising :class:`RestoreError` on failure."""
    try:
        return int(text)
    except ValueError:
        raise RestoreError(f"Invalid value for {name!r}: {text!r}")


# ============================================================
# Abstract cursors
# ============================================================

class StateWriter(ABC):
    """Write cursor over a hierarchical state document."""

    @abstractmethod
    def open_level(self, name: str) -> None:
        """Start a named sub level; subsequent values go inside it."""

    @abstractmethod
    def insert_value(self, name: str, value: Any) -> None:
        """Append a named leaf value to the current level."""

    @abstractmethod
    def close_level(self) -> None:
        """Finish the innermost open sub level."""

    @contextmanager
    def level(self, name: str) -> Iterator["StateWriter"]:
        """Context manager wrapping :meth:`open_level` / :meth:`close_level`."""
        self.open_level(name)
        try:
            yield self
        finally:
            self.close_level()


class StateReader(ABC):
    """
    Read cursor positioned on one node of a level of a state document.

    Iterating over a reader visits the current node and each following
    sibling, yielding the reader itself at every position.
    """

    @property
    @abstractmethod
    def at_end(self) -> bool:
        """True once the cursor has moved past the last node of its level."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the current node."""

    @property
    @abstractmethod
    def value(self) -> str:
        """Leaf value of the current node (empty for sub levels)."""

    @property
    @abstractmethod
    def has_sub_level(self) -> bool:
        """Whether the current node is a sub level."""

    @abstractmethod
    def next(self) -> bool:
        """Move to the next sibling; return False if there is none."""

    @abstractmethod
    def traverse_sub_level(self, func: Callable[["StateReader"], T]) -> T:
        """
        Call ``func`` with a reader over the children of the current node.

        Raises
        ------
        RestoreError
            If the current node is not a sub level.
        """

    def __iter__(self) -> Iterator["StateReader"]:
        if self.at_end:
            return
        yield self
        while self.next():
            yield self


# ============================================================
# In-memory document implementation
# ============================================================

class DocumentWriter(StateWriter):
    """
    :class:`StateWriter` building an in-memory :class:`StateNode` tree.

    Examples
    --------
    >>> writer = DocumentWriter()
    >>> writer.open_level("state")
    >>> writer.insert_value("count", 3)
    >>> writer.close_level()
    >>> writer.root.children[0].children[0].value
    '3'
    """

    def __init__(self):
        self._root = StateNode("root", children=[])
        self._stack: List[StateNode] = [self._root]

    @property
    def root(self) -> StateNode:
        if len(self._stack) != 1:
            raise ValueError(f"{len(self._stack) - 1} level(s) still open")
        return self._root

    def open_level(self, name: str) -> None:
        node = StateNode(name, children=[])
        self._stack[-1].children.append(node)
        self._stack.append(node)

    def insert_value(self, name: str, value: Any) -> None:
        self._stack[-1].children.append(StateNode(name, value=format_value(value)))

    def close_level(self) -> None:
        if len(self._stack) == 1:
            raise ValueError("No open level to close")
        self._stack.pop()

    def to_dict(self) -> dict:
        return self.root.to_dict()

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize the finished document as JSON text."""
        return json.dumps(self.to_dict(), indent=indent)


class DocumentReader(StateReader):
    """:class:`StateReader` over the children of an in-memory node."""

    def __init__(self, nodes: List[StateNode]):
        self._nodes = nodes
        self._index = 0

    @classmethod
    def from_node(cls, root: StateNode) -> "DocumentReader":
        if not root.is_level:
            raise RestoreError(f"Node {root.name!r} has no sub level")
        return cls(root.children)

    @classmethod
    def from_writer(cls, writer: DocumentWriter) -> "DocumentReader":
        return cls.from_node(writer.root)

    @classmethod
    def from_json(cls, text: str) -> "DocumentReader":
        """
        Parse a JSON document produced by :meth:`DocumentWriter.to_json`.

        Raises
        ------
        RestoreError
            If the text is not valid JSON or not a state document.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RestoreError(f"Invalid state document: {e}")
        return cls.from_node(StateNode.from_dict(data))

    def _current(self) -> StateNode:
        if self.at_end:
            raise RestoreError("Reader is past the end of its level")
        return self._nodes[self._index]

    @property
    def at_end(self) -> bool:
        return self._index >= len(self._nodes)

    @property
    def name(self) -> str:
        return self._current().name

    @property
    def value(self) -> str:
        return self._current().value

    @property
    def has_sub_level(self) -> bool:
        return self._current().is_level

    def next(self) -> bool:
        if self._index < len(self._nodes):
            self._index += 1
        return not self.at_end

    def traverse_sub_level(self, func: Callable[[StateReader], T]) -> T:
        node = self._current()
        if not node.is_level:
            raise RestoreError(f"Node {node.name!r} has no sub level")
        return func(DocumentReader(node.children))
