"""Tests for interface implementation discovery and call rewriting."""

import textwrap

import pytest

DOER_SOURCE = """
    package app

    type Doer interface {
    	M()
    }

    type Sink interface {
    	Write()
    }

    type Any interface{}

    type Impl struct{}

    func (i *Impl) M() {
    	i.prepare()
    }

    func (i *Impl) prepare() {}

    type Other struct{}

    func (o Other) M() {
    	o.cleanup()
    }

    func (o Other) cleanup() {}

    type T struct {
    	F   Doer
    	Out Sink
    }

    func (t *T) Run() {
    	t.F.M()
    	t.Out.Write()
    }
"""


def _dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


@pytest.fixture
def catalog():
    from callmap.type_catalog import TypeCatalog, parse_source

    return TypeCatalog([parse_source(_dedent(DOER_SOURCE).encode(), "app/app.go")])


@pytest.fixture
def symbols():
    from callmap.extractor import extract_symbols

    return extract_symbols(_dedent(DOER_SOURCE), "app/app.go")


class TestRegistry:
    """Name-only method set coverage."""

    def test_all_covering_types_registered(self, catalog):
        from callmap.interfaces import build_registry

        registry = build_registry(catalog)
        assert [i.type_name for i in registry["app.Doer"]] == ["Impl", "Other"]

    def test_empty_and_unimplemented_interfaces_absent(self, catalog):
        from callmap.interfaces import build_registry

        registry = build_registry(catalog)
        assert "app.Any" not in registry
        assert "app.Sink" not in registry

    def test_implementation_methods(self, catalog):
        from callmap.interfaces import build_registry

        impl = build_registry(catalog)["app.Doer"][0]
        assert set(impl.methods) == {"M"}
        assert impl.file == "app/app.go"
        assert impl.namespace == "app"


class TestResolve:
    """Single call resolution."""

    def test_field_call_resolves_to_implementation(self, catalog):
        from callmap.interfaces import InterfaceResolver

        resolution = InterfaceResolver(catalog).resolve("t.F.M")
        assert resolution.target == "Impl.M"
        assert [i.type_name for i in resolution.implementations] == ["Impl", "Other"]

    def test_type_method_call_resolves(self, catalog):
        from callmap.interfaces import InterfaceResolver

        assert InterfaceResolver(catalog).resolve("Doer.M").target == "Impl.M"

    def test_interface_without_implementations_is_qualified(self, catalog):
        from callmap.interfaces import InterfaceResolver

        resolution = InterfaceResolver(catalog).resolve("t.Out.Write")
        assert resolution.target == "app.Sink.Write"
        assert resolution.implementations == ()

    def test_known_symbol_untouched(self, catalog):
        from callmap.interfaces import InterfaceResolver

        resolver = InterfaceResolver(catalog)
        assert resolver.resolve("Doer.M", known_names={"Doer.M"}).target == "Doer.M"

    def test_unresolvable_unchanged(self, catalog):
        from callmap.interfaces import InterfaceResolver

        resolver = InterfaceResolver(catalog)
        assert resolver.resolve("x.Unknown.Call").target == "x.Unknown.Call"
        assert resolver.resolve("a.b.c.d").target == "a.b.c.d"


class TestResolveSymbols:
    """Rewriting and fan-out across a symbol list."""

    def test_fan_out_adds_edge_per_implementation(self, catalog, symbols):
        from callmap.interfaces import InterfaceResolver

        result = InterfaceResolver(catalog).resolve_symbols(symbols)
        run = next(s for s in result.symbols if s.name == "T.Run")
        assert run.calls == ["Impl.M", "Other.M", "app.Sink.Write"]
        assert result.edges_added == 1
        # Implementations already extracted are not synthesized again
        assert result.synthesized == []

    def test_missing_implementations_are_synthesized(self, catalog, symbols):
        from callmap.interfaces import InterfaceResolver

        only_run = [s for s in symbols if s.name == "T.Run"]
        result = InterfaceResolver(catalog).resolve_symbols(only_run)
        synthesized = {s.name: s for s in result.synthesized}

        assert set(synthesized) == {"Impl.M", "Impl.prepare", "Other.M", "Other.cleanup"}
        assert synthesized["Impl.M"].calls == ["Impl.prepare"]
        assert synthesized["Other.M"].calls == ["Other.cleanup"]
        assert all(s.synthetic and s.file == "app/app.go" for s in result.synthesized)

    def test_inputs_not_modified(self, catalog, symbols):
        from callmap.interfaces import InterfaceResolver

        before = [list(s.calls) for s in symbols]
        InterfaceResolver(catalog).resolve_symbols(symbols)
        assert [s.calls for s in symbols] == before

    def test_deterministic(self, catalog, symbols):
        from callmap.interfaces import InterfaceResolver

        first = InterfaceResolver(catalog).resolve_symbols(symbols)
        second = InterfaceResolver(catalog).resolve_symbols(symbols)
        assert [s.to_dict() for s in first.all_symbols] == [s.to_dict() for s in second.all_symbols]
