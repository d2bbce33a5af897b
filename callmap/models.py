"""
Data model for the call graph pipeline.

Symbols flow from the extractor through interface resolution and dependency
scanning into the graph assembler, which turns them into Relations and a
Snapshot. Everything here serializes to the camelCase JSON shape used by the
query API and the on-disk artifacts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# (qualified name, file path) - the identity of a symbol in the graph
CompositeKey = tuple[str, str]

EXTERNAL_FILE_PREFIX = "external:"

STRUCT = "struct"
INTERFACE = "interface"


def namespace_of(name: str) -> str:
    """Return the namespace token (first dotted segment) of a qualified name."""
    return name.split(".", 1)[0]


@dataclass
class Symbol:
    """A declared function or method and the calls found in its body."""

    name: str
    file: str
    line: int
    calls: list[str] = field(default_factory=list)
    external: bool = False
    synthetic: bool = False

    @property
    def key(self) -> CompositeKey:
        return (self.name, self.file)

    @property
    def namespace(self) -> str:
        return namespace_of(self.name)

    def copy(self) -> Symbol:
        """Copy with an independent call list."""
        return Symbol(
            name=self.name,
            file=self.file,
            line=self.line,
            calls=list(self.calls),
            external=self.external,
            synthetic=self.synthetic,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "line": self.line,
            "filePath": self.file,
            "calls": list(self.calls),
        }


@dataclass(frozen=True)
class TypeDescriptor:
    """A struct or interface declaration found by the structural parser."""

    name: str
    namespace: str
    kind: str
    fields: dict[str, str] = field(default_factory=dict)
    methods: tuple[str, ...] = ()
    origin: str | None = None

    @property
    def key(self) -> str:
        """Catalog key: import path for external types, package name otherwise."""
        return f"{self.origin or self.namespace}.{self.name}"

    @property
    def is_interface(self) -> bool:
        return self.kind == INTERFACE

    @property
    def is_struct(self) -> bool:
        return self.kind == STRUCT


@dataclass(frozen=True)
class MethodMetadata:
    """A method declaration with its span and the calls made in its body."""

    name: str
    owner: str
    receiver: str
    file: str
    start_line: int
    end_line: int
    calls: tuple[str, ...] = ()


@dataclass(frozen=True)
class InterfaceImplementation:
    """A type whose method set covers every method name of an interface."""

    interface: TypeDescriptor
    type_name: str
    namespace: str
    file: str
    methods: dict[str, MethodMetadata] = field(default_factory=dict)


@dataclass
class ExternalDependency:
    """A module required by a go.mod manifest."""

    path: str
    version: str
    indirect: bool = False
    root: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.path, self.version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "version": self.version,
            "indirect": self.indirect,
            "root": self.root,
        }


@dataclass(frozen=True)
class Callee:
    """One outgoing edge of a Relation. Placeholders have line 0 and no file."""

    name: str
    line: int
    file: str

    @property
    def key(self) -> CompositeKey:
        return (self.name, self.file)

    @property
    def is_placeholder(self) -> bool:
        return self.file == ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "line": self.line, "filePath": self.file}


@dataclass(frozen=True)
class Relation:
    """A symbol and the callees it resolves to."""

    name: str
    line: int
    file: str
    called: tuple[Callee, ...] = ()

    @property
    def key(self) -> CompositeKey:
        return (self.name, self.file)

    @classmethod
    def leaf(cls, symbol: Symbol) -> Relation:
        """Relation for a symbol with no retained callees."""
        return cls(name=symbol.name, line=symbol.line, file=symbol.file)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "line": self.line,
            "filePath": self.file,
            "called": [c.to_dict() for c in self.called],
        }


@dataclass(frozen=True)
class RemovedCalls:
    """Calls dropped by the local-namespace filter, keyed by the calling symbol."""

    per_function: dict[str, list[str]] = field(default_factory=dict)

    @property
    def unique(self) -> list[str]:
        seen: set[str] = set()
        for calls in self.per_function.values():
            seen.update(calls)
        return sorted(seen)

    def to_dict(self) -> dict[str, Any]:
        return {
            "removedPerFunction": {k: list(v) for k, v in self.per_function.items()},
            "uniqueRemovedCalls": self.unique,
        }


@dataclass(frozen=True)
class Snapshot:
    """One fully assembled call graph. Replaced wholesale on reload."""

    symbols: tuple[Symbol, ...]
    relations: tuple[Relation, ...]
    index: dict[CompositeKey, Relation]
    roots: tuple[Relation, ...]
    loaded_at: datetime
    removed: RemovedCalls = field(default_factory=RemovedCalls)
    include_external: bool = False

    @property
    def loaded_at_iso(self) -> str:
        return self.loaded_at.isoformat()

    def summary(self) -> dict[str, Any]:
        return {
            "symbols": len(self.symbols),
            "relations": len(self.relations),
            "roots": len(self.roots),
            "loadedAt": self.loaded_at_iso,
        }
