"""
Interface implementation discovery and call rewriting.

Go interfaces are satisfied implicitly, so a call such as `svc.Store.Save(...)`
names an interface method, not the code that runs. This module derives an
implementation registry from the type catalog (a type implements an interface
when its method set covers every interface method name) and uses it to rewrite
ambiguous call references into concrete `Type.Method` targets.

Matching is by method name only. Parameter and result types are not compared,
so a type with a same-named method of a different shape still counts as an
implementation.

Every call that lands on an interface method with concrete implementations is
fanned out: the caller gets an edge to each implementation, and implementation
methods missing from the symbol universe are synthesized. This grows the
relation list with the number of implementations per interface.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from callmap.extractor import filter_calls
from callmap.models import (
    EXTERNAL_FILE_PREFIX,
    CompositeKey,
    InterfaceImplementation,
    MethodMetadata,
    Symbol,
    TypeDescriptor,
)
from callmap.type_catalog import FileTypes, TypeCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Result of resolving one call reference."""

    target: str
    interface: Optional[TypeDescriptor] = None
    implementations: tuple[InterfaceImplementation, ...] = ()

    @property
    def method(self) -> str:
        return self.target.rsplit(".", 1)[-1]


@dataclass
class ResolvedSymbols:
    """Output of InterfaceResolver.resolve_symbols."""

    symbols: list[Symbol] = field(default_factory=list)
    synthesized: list[Symbol] = field(default_factory=list)
    edges_added: int = 0

    @property
    def all_symbols(self) -> list[Symbol]:
        return self.symbols + self.synthesized


def implements(method_set: Iterable[str], interface_methods: Iterable[str]) -> bool:
    """True when every interface method name is in the method set."""
    available = set(method_set)
    return all(name in available for name in interface_methods)


def build_registry(catalog: TypeCatalog) -> dict[str, list[InterfaceImplementation]]:
    """
    Map each interface key to the types implementing it.

    Interfaces with an empty method set are skipped; every type would match them.
    """
    registry: dict[str, list[InterfaceImplementation]] = {}
    for interface in catalog.interfaces():
        if not interface.methods:
            continue
        for owner_key in sorted(catalog.methods):
            methods = catalog.methods[owner_key]
            if not implements(methods, interface.methods):
                continue
            namespace, type_name = owner_key.rsplit(".", 1)
            impl_methods = {name: methods[name] for name in interface.methods}
            first = impl_methods[interface.methods[0]]
            registry.setdefault(interface.key, []).append(
                InterfaceImplementation(
                    interface=interface,
                    type_name=type_name,
                    namespace=namespace,
                    file=first.file,
                    methods=impl_methods,
                )
            )
    return registry


def _base_name(type_str: str) -> str:
    base = type_str
    while base.startswith("[]"):
        base = base[2:]
    return base.rsplit(".", 1)[-1]


def type_matches_interface(interface: TypeDescriptor, field_type: str, resolved: str) -> bool:
    """Whether a field's declared/resolved type refers to the given interface."""
    qualified = f"{interface.namespace}.{interface.name}"
    if resolved in (interface.key, qualified):
        return True
    if resolved.endswith("/" + qualified):
        return True
    if interface.origin and resolved == f"{interface.origin}.{interface.name}":
        return True
    return _base_name(field_type) == interface.name


class InterfaceResolver:
    """
    Rewrites call references using the type catalog and implementation registry.

    Resolution is a pure lookup over the catalog: the same symbols and catalog
    always give the same result.
    """

    def __init__(self, catalog: TypeCatalog):
        self.catalog = catalog
        self.registry = build_registry(catalog)

    def implementation_count(self) -> int:
        return sum(len(impls) for impls in self.registry.values())

    def resolve(self, call: str, known_names: Optional[set[str]] = None) -> Resolution:
        """
        Resolve one call reference.

        Calls already naming a known symbol are returned unchanged. Two-segment
        calls are treated as Type.Method, three-segment calls as var.Field.Method;
        anything else is returned unchanged.
        """
        if known_names and call in known_names:
            return Resolution(call)
        parts = call.split(".")
        if len(parts) == 2:
            return self._resolve_type_method(parts[0], parts[1]) or Resolution(call)
        if len(parts) == 3:
            return self._resolve_field_method(parts[1], parts[2]) or Resolution(call)
        return Resolution(call)

    def _implementations_with(self, interface_key: str, method: str) -> tuple[InterfaceImplementation, ...]:
        return tuple(i for i in self.registry.get(interface_key, []) if method in i.methods)

    def _resolve_type_method(self, token: str, method: str) -> Optional[Resolution]:
        for key in sorted(self.registry):
            impls = self._implementations_with(key, method)
            if impls and token in impls[0].interface.name:
                first = impls[0]
                return Resolution(f"{first.type_name}.{method}", first.interface, impls)

        for interface in self.catalog.interfaces():
            if token in interface.name and method in interface.methods:
                return Resolution(f"{interface.key}.{method}", interface)
        return None

    def resolve_field_type(self, field_type: str, file_types: FileTypes) -> str:
        """Qualify an unqualified field type through imports or the declaring package."""
        if "." in field_type:
            return field_type
        for import_path in file_types.imports.values():
            candidate = f"{import_path}.{field_type}"
            if candidate in self.catalog.types:
                return candidate
        local = f"{file_types.namespace_key}.{field_type}"
        if local in self.catalog.types:
            return local
        return field_type

    def _resolve_field_method(self, field_name: str, method: str) -> Optional[Resolution]:
        for file_types, struct in self.catalog.structs_with_field(field_name):
            field_type = struct.fields[field_name]
            resolved = self.resolve_field_type(field_type, file_types)

            for key in sorted(self.registry):
                impls = self._implementations_with(key, method)
                if impls and type_matches_interface(impls[0].interface, field_type, resolved):
                    first = impls[0]
                    return Resolution(f"{first.type_name}.{method}", first.interface, impls)

            for interface in self.catalog.interfaces():
                if method in interface.methods and type_matches_interface(
                    interface, field_type, resolved
                ):
                    return Resolution(f"{interface.key}.{method}", interface)
        return None

    def _type_methods(self, impl: InterfaceImplementation) -> dict[str, MethodMetadata]:
        return self.catalog.methods.get(f"{impl.namespace}.{impl.type_name}", impl.methods)

    @staticmethod
    def _receiver_calls(method: MethodMetadata, type_name: str) -> list[str]:
        """Rewrite recv.x to Type.x (one level), then apply the noise filter."""
        rewritten = []
        for call in method.calls:
            parts = call.split(".")
            if method.receiver and len(parts) == 2 and parts[0] == method.receiver:
                call = f"{type_name}.{parts[1]}"
            rewritten.append(call)
        return filter_calls(rewritten)

    @staticmethod
    def _method_symbol(method: MethodMetadata, type_name: str, calls: list[str]) -> Symbol:
        return Symbol(
            name=f"{type_name}.{method.name}",
            file=method.file,
            line=method.start_line,
            calls=calls,
            external=method.file.startswith(EXTERNAL_FILE_PREFIX),
            synthetic=True,
        )

    def fan_out(self, resolution: Resolution) -> list[Symbol]:
        """
        Implementation symbols for an interface-method resolution.

        For each implementation of the resolved method, returns the method's
        symbol first, followed by symbols for the same-receiver methods it calls.
        """
        symbols: list[Symbol] = []
        method_name = resolution.method
        for impl in resolution.implementations:
            method = impl.methods.get(method_name)
            if method is None:
                continue
            symbols.append(
                self._method_symbol(method, impl.type_name, self._receiver_calls(method, impl.type_name))
            )
            type_methods = self._type_methods(impl)
            for call in method.calls:
                parts = call.split(".")
                if not (method.receiver and len(parts) == 2 and parts[0] == method.receiver):
                    continue
                internal = type_methods.get(parts[1])
                if internal is None or internal.name == method_name:
                    continue
                symbols.append(
                    self._method_symbol(
                        internal, impl.type_name, self._receiver_calls(internal, impl.type_name)
                    )
                )
        return symbols

    def resolve_symbols(self, symbols: list[Symbol]) -> ResolvedSymbols:
        """
        Rewrite every symbol's calls and fan interface calls out to implementations.

        Input symbols are not modified; the result holds rewritten copies plus
        the synthesized implementation symbols that were not already present.
        """
        result = ResolvedSymbols()
        universe: set[CompositeKey] = {s.key for s in symbols}
        known_names: set[str] = {s.name for s in symbols}

        for original in symbols:
            symbol = original.copy()
            calls: list[str] = []
            for call in original.calls:
                resolution = self.resolve(call, known_names)
                if resolution.target not in calls:
                    calls.append(resolution.target)
                if not resolution.implementations:
                    continue
                fanned = self.fan_out(resolution)
                for impl_symbol in fanned:
                    if impl_symbol.key not in universe:
                        universe.add(impl_symbol.key)
                        known_names.add(impl_symbol.name)
                        result.synthesized.append(impl_symbol)
                for impl in resolution.implementations:
                    target = f"{impl.type_name}.{resolution.method}"
                    if target not in calls:
                        calls.append(target)
                        result.edges_added += 1
            symbol.calls = calls
            result.symbols.append(symbol)

        logger.info(
            f"Interface fan-out: {self.implementation_count()} implementations known, "
            f"{len(result.synthesized)} symbols synthesized, {result.edges_added} edges added"
        )
        return result
