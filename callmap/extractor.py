"""
Heuristic function and call extraction for Go source files.

This is the fast, line-oriented stage of the pipeline. It recognizes function
and method declarations by prefix regexes, finds each body by brace counting,
and collects every `ident(.ident)*(` occurrence as a call reference. It trades
precision for speed and robustness: files that do not parse still yield
symbols, and the noise filter in callmap.noise removes the bulk of false
positives.

Brace counting does not mask braces inside string or comment literals, so a
body containing e.g. "}" in a string literal ends early. Calls after that point
are lost for that function.

Key functions:
- extract_symbols(text, file_label) - symbols declared in one file's text
- extract_file(path, root) - same, reading the file and labelling it relative to root
- filter_calls(calls) - the layered noise filter, shared with fan-out synthesis
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from callmap.errors import SourceParseError
from callmap.models import Symbol, namespace_of
from callmap.noise import DENIED_NAMESPACES, HANDLER_PREFIXES, denied_method_category

logger = logging.getLogger(__name__)

PACKAGE_RE = re.compile(r"^package\s+(\w+)")
FUNC_RE = re.compile(r"^\s*func\s+(\w+)")
# func (recv *Type[T]) Name  - receiver variable is optional
METHOD_RE = re.compile(
    r"^\s*func\s*\(\s*(?:(\w+)\s+)?\*?\s*(\w+)(?:\[[^\]]*\])?\s*\)\s*(\w+)"
)
CALL_RE = re.compile(r"(\w+(?:\.\w+)*)\(")
HANDLER_ARG_RE = re.compile(
    r"[(,]\s*((?:%s)[A-Z_]\w*)\s*(?=[,)])" % "|".join(map(re.escape, HANDLER_PREFIXES))
)


@dataclass(frozen=True)
class Declaration:
    """A function or method declaration line."""

    name: str
    owner: str
    receiver: str | None
    line_index: int
    is_method: bool

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"


def find_package(lines: list[str]) -> str | None:
    for line in lines:
        match = PACKAGE_RE.match(line)
        if match:
            return match.group(1)
    return None


def find_declarations(lines: list[str], package: str) -> list[Declaration]:
    """Find function and method declarations, in file order."""
    declarations = []
    for i, line in enumerate(lines):
        method = METHOD_RE.match(line)
        if method:
            receiver, owner, name = method.groups()
            declarations.append(Declaration(name, owner, receiver, i, True))
            continue
        func = FUNC_RE.match(line)
        if func:
            declarations.append(Declaration(func.group(1), package, None, i, False))
    return declarations


def function_body(lines: list[str], decl_index: int) -> str | None:
    """
    Return the text between a declaration's opening brace and its matching close.

    Depth counting starts at the declaration line and stops at the first point
    where depth returns to zero. Braces in strings and comments are counted too.

    Returns:
        Body text without the outer braces, or None if no balanced body was found
    """
    depth = 0
    parts: list[str] = []
    for j in range(decl_index, len(lines)):
        line = lines[j]
        segment_start = None
        for col, char in enumerate(line):
            if char == "{":
                depth += 1
                if depth == 1 and segment_start is None and not parts:
                    segment_start = col + 1
                    continue
            elif char == "}":
                depth -= 1
                if depth == 0:
                    parts.append(line[segment_start or 0 : col])
                    return "\n".join(parts)
        if depth > 0:
            parts.append(line[segment_start or 0 :])
    return None


def find_raw_calls(body: str) -> list[str]:
    """Call references in a body: literal call sites plus handler-like arguments."""
    calls = CALL_RE.findall(body)
    calls.extend(HANDLER_ARG_RE.findall(body))
    return calls


def filter_calls(calls: Iterable[str]) -> list[str]:
    """
    Apply the layered noise filter.

    1. drop bare calls (no namespace dot)
    2. drop calls into denied namespaces (fmt, strings, sync, ...)
    3. drop calls whose trailing method is a known noisy API
    4. keep the rest, deduplicated, first occurrence order
    """
    kept: list[str] = []
    seen: set[str] = set()
    for call in calls:
        if "." not in call:
            continue
        if namespace_of(call) in DENIED_NAMESPACES:
            continue
        method = call.rsplit(".", 1)[1]
        if denied_method_category(method) is not None:
            continue
        if call in seen:
            continue
        seen.add(call)
        kept.append(call)
    return kept


def _local_names(declarations: list[Declaration]) -> dict[str, str]:
    # A bare call can only name a free function, never a method
    return {d.name: d.qualified_name for d in declarations if not d.is_method}


def qualify_calls(
    raw_calls: list[str], decl: Declaration, local_names: dict[str, str]
) -> list[str]:
    """
    Rewrite same-file bare calls and receiver calls, then filter noise.

    Bare calls naming a declaration in another file stay unqualified and are
    dropped by the filter.
    """
    qualified: list[str] = []
    for call in raw_calls:
        if "." not in call:
            local = local_names.get(call)
            if local:
                qualified.append(local)
            continue
        if decl.receiver and call.count(".") == 1:
            var, method = call.split(".")
            if var == decl.receiver:
                call = f"{decl.owner}.{method}"
        qualified.append(call)
    return filter_calls(qualified)


def extract_symbols(
    text: str,
    file_label: str,
    exported_only: bool = False,
    skip_main: bool = False,
    external: bool = False,
) -> list[Symbol]:
    """
    Extract declared functions and methods with their filtered call references.

    Args:
        text: Go source text
        file_label: Path recorded on each symbol (relative path or external marker)
        exported_only: Keep only capitalized declarations
        skip_main: Return nothing for files in package main
        external: Mark symbols as coming from an external module

    Returns:
        Symbols in declaration order
    """
    lines = text.split("\n")
    package = find_package(lines)
    if package is None:
        logger.debug(f"No package clause in {file_label}, skipping")
        return []
    if skip_main and package == "main":
        return []

    declarations = find_declarations(lines, package)
    local_names = _local_names(declarations)

    symbols = []
    for decl in declarations:
        if exported_only and not decl.name[:1].isupper():
            continue
        symbol = Symbol(
            name=decl.qualified_name,
            file=file_label,
            line=decl.line_index + 1,
            external=external,
        )
        body = function_body(lines, decl.line_index)
        if body is not None:
            symbol.calls = qualify_calls(find_raw_calls(body), decl, local_names)
        symbols.append(symbol)
    return symbols


def extract_file(
    file_path: str | Path,
    root: str | Path,
    file_label: str | None = None,
    exported_only: bool = False,
    skip_main: bool = False,
    external: bool = False,
) -> list[Symbol]:
    """
    Read a Go file and extract its symbols, labelled relative to root.

    Raises:
        SourceParseError: If the file cannot be read
    """
    path = Path(file_path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceParseError(path, e) from e
    if file_label is None:
        file_label = path.relative_to(root).as_posix()
    return extract_symbols(
        text,
        file_label,
        exported_only=exported_only,
        skip_main=skip_main,
        external=external,
    )
