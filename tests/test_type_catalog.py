"""Tests for the tree-sitter structural parser and the type catalog."""

import textwrap


def _parse(text: str, label: str = "app/types.go", **kwargs):
    from callmap.type_catalog import parse_source

    return parse_source(textwrap.dedent(text).lstrip("\n").encode(), label, **kwargs)


STORE_SOURCE = """
    package app

    import (
    	"context"
    	db "example.com/app/internal/database"
    )

    type Store interface {
    	Save(ctx context.Context) error
    	Load()
    }

    type Service struct {
    	Store  Store
    	DB     *db.Conn
    	Items  []Item
    	byName map[string]*Item
    	Logger
    }

    type Memory struct{}

    func (m *Memory) Save(ctx context.Context) error {
    	m.flush()
    	return nil
    }

    func (m *Memory) Load() {}

    func (m *Memory) flush() {}
"""


class TestParseSource:
    """Declarations read from one file."""

    def test_package_and_imports(self):
        types = _parse(STORE_SOURCE)
        assert types.package == "app"
        assert types.imports == {
            "context": "context",
            "db": "example.com/app/internal/database",
        }

    def test_interface_methods(self):
        types = _parse(STORE_SOURCE)
        store = types.interfaces["app.Store"]
        assert store.is_interface
        assert store.methods == ("Save", "Load")

    def test_struct_fields(self):
        types = _parse(STORE_SOURCE)
        fields = types.structs["app.Service"].fields
        assert fields["Store"] == "Store"
        assert fields["DB"] == "example.com/app/internal/database.Conn"
        assert fields["Items"] == "[]Item"
        assert fields["byName"] == "map[string]Item"
        assert fields["Logger"] == "Logger"

    def test_method_metadata(self):
        types = _parse(STORE_SOURCE)
        by_name = {m.name: m for m in types.methods}
        save = by_name["Save"]
        assert save.owner == "Memory"
        assert save.receiver == "m"
        assert save.file == "app/types.go"
        assert save.calls == ("m.flush",)
        assert save.end_line > save.start_line

    def test_exported_only_drops_private_members(self):
        types = _parse(STORE_SOURCE, exported_only=True)
        assert "byName" not in types.structs["app.Service"].fields
        assert {m.name for m in types.methods} == {"Save", "Load"}

    def test_external_origin_keys(self):
        types = _parse(STORE_SOURCE, origin="github.com/acme/app")
        assert "github.com/acme/app.Store" in types.interfaces
        assert types.namespace_key == "github.com/acme/app"

    def test_syntax_error_yields_none(self):
        assert _parse("package app\n\nfunc broken( {\n") is None


class TestPackageNameForPath:
    def test_major_version_suffix(self):
        from callmap.type_catalog import package_name_for_path

        assert package_name_for_path("github.com/acme/lib/v2") == "lib"
        assert package_name_for_path("github.com/acme/lib") == "lib"


class TestTypeCatalog:
    """Aggregation across files."""

    def test_method_sets_by_owner(self):
        from callmap.type_catalog import TypeCatalog

        catalog = TypeCatalog([_parse(STORE_SOURCE)])
        assert set(catalog.methods["app.Memory"]) == {"Save", "Load", "flush"}
        assert [i.name for i in catalog.interfaces()] == ["Store"]
        assert len(catalog) == 3

    def test_structs_with_field(self):
        from callmap.type_catalog import TypeCatalog

        catalog = TypeCatalog([_parse(STORE_SOURCE)])
        found = list(catalog.structs_with_field("Store"))
        assert [d.name for _, d in found] == ["Service"]
        assert list(catalog.structs_with_field("Missing")) == []

    def test_first_declaration_wins(self):
        from callmap.type_catalog import TypeCatalog

        first = _parse("package app\n\ntype A struct{ X int }\n", "a.go")
        second = _parse("package app\n\ntype A struct{ Y int }\n", "b.go")
        catalog = TypeCatalog([first, second])
        assert "X" in catalog.types["app.A"].fields
