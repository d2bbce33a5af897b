"""
Declaration-level Go parsing with tree-sitter.

Unlike the heuristic extractor, type resolution cannot live with false
positives, so this stage works from an exact parse: imports, struct fields,
interface method sets and method declarations are read from the syntax tree.
A file whose tree contains syntax errors contributes no type information at
all rather than partial, possibly wrong, information.

Key functions:
- parse_source(source, file_label) - FileTypes for one file's bytes
- parse_file(path, root) - same, reading the file; None on any failure
- TypeCatalog - aggregate of FileTypes across a tree
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import tree_sitter
import tree_sitter_go

from callmap.models import INTERFACE, STRUCT, MethodMetadata, TypeDescriptor

logger = logging.getLogger(__name__)

# Parsers are not safe to share between threads; dependency scans parse
# external types from a thread pool.
_local = threading.local()

MAX_WALK_DEPTH = 500


def get_parser() -> tree_sitter.Parser:
    """Get or create this thread's tree-sitter Go parser."""
    parser = getattr(_local, "parser", None)
    if parser is None:
        language = tree_sitter.Language(tree_sitter_go.language())
        parser = tree_sitter.Parser(language)
        _local.parser = parser
    return parser


@dataclass
class FileTypes:
    """Everything the structural parser learned from one file."""

    file: str
    package: str
    origin: Optional[str] = None
    imports: dict[str, str] = field(default_factory=dict)
    structs: dict[str, TypeDescriptor] = field(default_factory=dict)
    interfaces: dict[str, TypeDescriptor] = field(default_factory=dict)
    methods: list[MethodMetadata] = field(default_factory=list)

    @property
    def namespace_key(self) -> str:
        return self.origin or self.package


def _text(node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def _is_exported(name: str) -> bool:
    return name[:1].isupper()


def package_name_for_path(import_path: str) -> str:
    """Default package name for an import path (last segment, skipping /vN)."""
    parts = [p for p in import_path.rstrip("/").split("/") if p]
    if not parts:
        return import_path
    last = parts[-1]
    if len(parts) > 1 and last[:1] == "v" and last[1:].isdigit():
        return parts[-2]
    return last


def _walk(node, depth: int = 0) -> Iterator:
    if depth > MAX_WALK_DEPTH:
        return
    yield node
    for child in node.children:
        yield from _walk(child, depth + 1)


def _parse_imports(root_node, source: bytes) -> dict[str, str]:
    imports: dict[str, str] = {}
    for node in root_node.children:
        if node.type != "import_declaration":
            continue
        specs = []
        for child in node.children:
            if child.type == "import_spec":
                specs.append(child)
            elif child.type == "import_spec_list":
                specs.extend(c for c in child.children if c.type == "import_spec")
        for spec in specs:
            path_node = spec.child_by_field_name("path")
            if path_node is None:
                continue
            import_path = _text(path_node, source).strip('"`')
            name_node = spec.child_by_field_name("name")
            if name_node is not None:
                alias = _text(name_node, source)
                if alias in ("_", "."):
                    continue  # blank and dot imports add no qualifier
            else:
                alias = package_name_for_path(import_path)
            imports[alias] = import_path
    return imports


def type_string(node, source: bytes, imports: dict[str, str]) -> str:
    """
    Render a type expression, qualifying package references via the import table.

    Pointers are stripped; slices, arrays, maps and channels are rendered
    around their resolved element types.
    """
    if node is None:
        return "unknown"
    kind = node.type
    if kind == "type_identifier":
        return _text(node, source)
    if kind == "qualified_type":
        pkg = _text(node.child_by_field_name("package"), source)
        name = _text(node.child_by_field_name("name"), source)
        return f"{imports.get(pkg, pkg)}.{name}"
    if kind in ("pointer_type", "parenthesized_type"):
        inner = node.named_children[0] if node.named_children else None
        return type_string(inner, source, imports)
    if kind in ("slice_type", "array_type"):
        return "[]" + type_string(node.child_by_field_name("element"), source, imports)
    if kind == "map_type":
        key = type_string(node.child_by_field_name("key"), source, imports)
        value = type_string(node.child_by_field_name("value"), source, imports)
        return f"map[{key}]{value}"
    if kind == "channel_type":
        return "chan " + type_string(node.child_by_field_name("value"), source, imports)
    if kind == "generic_type":
        return type_string(node.child_by_field_name("type"), source, imports)
    return "unknown"


def _base_type_name(node, source: bytes) -> Optional[str]:
    """Unqualified name of a receiver or embedded type (T for *T, T[K])."""
    while node is not None and node.type in ("pointer_type", "generic_type", "parenthesized_type"):
        if node.type == "generic_type":
            node = node.child_by_field_name("type")
        else:
            node = node.named_children[0] if node.named_children else None
    if node is None:
        return None
    if node.type == "type_identifier":
        return _text(node, source)
    if node.type == "qualified_type":
        return _text(node.child_by_field_name("name"), source)
    return None


def _struct_fields(
    struct_node, source: bytes, imports: dict[str, str], exported_only: bool
) -> dict[str, str]:
    fields: dict[str, str] = {}
    for child in struct_node.children:
        if child.type != "field_declaration_list":
            continue
        for decl in child.children:
            if decl.type != "field_declaration":
                continue
            type_node = decl.child_by_field_name("type")
            rendered = type_string(type_node, source, imports)
            names = [_text(n, source) for n in decl.children_by_field_name("name")]
            if not names:
                # Embedded field: named after its type
                embedded = _base_type_name(type_node, source)
                names = [embedded] if embedded else []
            for name in names:
                if exported_only and not _is_exported(name):
                    continue
                fields.setdefault(name, rendered)
    return fields


def _interface_methods(iface_node, source: bytes, exported_only: bool) -> tuple[str, ...]:
    methods: list[str] = []

    def collect(node):
        for child in node.children:
            if child.type in ("method_elem", "method_spec"):
                name_node = child.child_by_field_name("name")
                if name_node is None:
                    continue
                name = _text(name_node, source)
                if exported_only and not _is_exported(name):
                    continue
                if name not in methods:
                    methods.append(name)
            elif child.type == "method_spec_list":
                collect(child)

    collect(iface_node)
    return tuple(methods)


def _call_name(function_node, source: bytes) -> Optional[str]:
    """Name of a call target in the shapes f, x.F and x.y.F."""
    if function_node.type == "identifier":
        return _text(function_node, source)
    if function_node.type != "selector_expression":
        return None
    operand = function_node.child_by_field_name("operand")
    selected = _text(function_node.child_by_field_name("field"), source)
    if operand is None:
        return None
    if operand.type == "identifier":
        return f"{_text(operand, source)}.{selected}"
    if operand.type == "selector_expression":
        base = operand.child_by_field_name("operand")
        middle = operand.child_by_field_name("field")
        if base is not None and base.type == "identifier" and middle is not None:
            return f"{_text(base, source)}.{_text(middle, source)}.{selected}"
    return None


def _body_calls(body_node, source: bytes) -> tuple[str, ...]:
    calls: list[str] = []
    if body_node is None:
        return ()
    for node in _walk(body_node):
        if node.type != "call_expression":
            continue
        function_node = node.child_by_field_name("function")
        if function_node is None:
            continue
        name = _call_name(function_node, source)
        if name and name not in calls:
            calls.append(name)
    return tuple(calls)


def _method_metadata(node, source: bytes, file_label: str) -> Optional[MethodMetadata]:
    receiver_list = node.child_by_field_name("receiver")
    name_node = node.child_by_field_name("name")
    if receiver_list is None or name_node is None:
        return None
    params = [c for c in receiver_list.children if c.type == "parameter_declaration"]
    if not params:
        return None
    owner = _base_type_name(params[0].child_by_field_name("type"), source)
    if owner is None:
        return None
    receiver_name = params[0].child_by_field_name("name")
    return MethodMetadata(
        name=_text(name_node, source),
        owner=owner,
        receiver=_text(receiver_name, source) if receiver_name is not None else "",
        file=file_label,
        start_line=node.start_point[0] + 1,
        end_line=node.end_point[0] + 1,
        calls=_body_calls(node.child_by_field_name("body"), source),
    )


def parse_source(
    source: bytes,
    file_label: str,
    origin: Optional[str] = None,
    exported_only: bool = False,
) -> Optional[FileTypes]:
    """
    Parse one Go file's declarations.

    Args:
        source: File contents
        file_label: Path recorded on method metadata
        origin: Module import path when parsing an external module
        exported_only: Keep only exported types, fields and methods

    Returns:
        FileTypes, or None if the source has syntax errors or no package clause
    """
    tree = get_parser().parse(source)
    root = tree.root_node
    if root.has_error:
        logger.warning(f"Syntax errors in {file_label}, no type information recorded")
        return None

    package = None
    for child in root.children:
        if child.type == "package_clause":
            for pc in child.children:
                if pc.type == "package_identifier":
                    package = _text(pc, source)
    if package is None:
        logger.warning(f"No package clause in {file_label}")
        return None

    file_types = FileTypes(file=file_label, package=package, origin=origin)
    file_types.imports = _parse_imports(root, source)

    for node in _walk(root):
        if node.type == "type_spec":
            name_node = node.child_by_field_name("name")
            type_node = node.child_by_field_name("type")
            if name_node is None or type_node is None:
                continue
            name = _text(name_node, source)
            if exported_only and not _is_exported(name):
                continue
            if type_node.type == "struct_type":
                descriptor = TypeDescriptor(
                    name=name,
                    namespace=package,
                    kind=STRUCT,
                    fields=_struct_fields(type_node, source, file_types.imports, exported_only),
                    origin=origin,
                )
                file_types.structs[descriptor.key] = descriptor
            elif type_node.type == "interface_type":
                descriptor = TypeDescriptor(
                    name=name,
                    namespace=package,
                    kind=INTERFACE,
                    methods=_interface_methods(type_node, source, exported_only),
                    origin=origin,
                )
                file_types.interfaces[descriptor.key] = descriptor
        elif node.type == "method_declaration":
            metadata = _method_metadata(node, source, file_label)
            if metadata is None:
                continue
            if exported_only and not _is_exported(metadata.name):
                continue
            file_types.methods.append(metadata)

    return file_types


def parse_file(
    file_path: str | Path,
    root: str | Path,
    file_label: Optional[str] = None,
    origin: Optional[str] = None,
    exported_only: bool = False,
) -> Optional[FileTypes]:
    """Parse a file on disk. Read and parse failures yield None, never raise."""
    path = Path(file_path)
    if file_label is None:
        file_label = path.relative_to(root).as_posix()
    try:
        source = path.read_bytes()
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return None
    try:
        return parse_source(source, file_label, origin=origin, exported_only=exported_only)
    except (ValueError, RuntimeError) as e:
        logger.warning(f"Failed to parse {path}: {e}")
        return None


class TypeCatalog:
    """
    Union of declared types and method sets across all parsed files.

    Types are keyed "namespace.Name" (package name for local code, import path
    for external modules). Method sets are keyed the same way by receiver type.
    """

    def __init__(self, file_types: Optional[list[FileTypes]] = None):
        self.files: dict[str, FileTypes] = {}
        self.types: dict[str, TypeDescriptor] = {}
        self.methods: dict[str, dict[str, MethodMetadata]] = {}
        for ft in file_types or []:
            self.add(ft)

    def add(self, file_types: FileTypes) -> None:
        self.files[file_types.file] = file_types
        for key, descriptor in {**file_types.structs, **file_types.interfaces}.items():
            self.types.setdefault(key, descriptor)
        for method in file_types.methods:
            owner_key = f"{file_types.namespace_key}.{method.owner}"
            self.methods.setdefault(owner_key, {}).setdefault(method.name, method)

    def extend(self, file_types: list[FileTypes]) -> None:
        for ft in file_types:
            self.add(ft)

    def interfaces(self) -> list[TypeDescriptor]:
        return [self.types[k] for k in sorted(self.types) if self.types[k].is_interface]

    def structs_with_field(self, field_name: str) -> Iterator[tuple[FileTypes, TypeDescriptor]]:
        """Struct descriptors declaring a field, with the file they came from."""
        for file_label in sorted(self.files):
            file_types = self.files[file_label]
            for key in sorted(file_types.structs):
                descriptor = file_types.structs[key]
                if field_name in descriptor.fields:
                    yield file_types, descriptor

    def __len__(self) -> int:
        return len(self.types)
