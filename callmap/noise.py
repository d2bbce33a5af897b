"""
Deny-list tables for the heuristic call extractor.

These tables are the extractor's precision knobs. They are applied in order:
namespace deny-list first, then the trailing-method deny-lists. Keeping them as
plain data makes the filter testable and easy to tune without touching the
scanning code.
"""

# Standard library and runtime package names. A call whose first segment is one
# of these (fmt.Println, strings.Split, ...) never points into user code.
DENIED_NAMESPACES: frozenset[str] = frozenset({
    "atomic", "base64", "bufio", "bytes", "context", "csv", "errors", "exec",
    "filepath", "flag", "fmt", "hex", "http", "io", "ioutil", "json", "log",
    "maps", "math", "os", "path", "rand", "reflect", "regexp", "runtime",
    "signal", "slices", "sort", "strconv", "strings", "sync", "syscall",
    "template", "time", "unicode", "url", "utf8", "xml",
})

# String and regex helpers called as methods (builder.WriteString, re.MatchString).
STRING_HELPERS: frozenset[str] = frozenset({
    "Contains", "EqualFold", "FindAllString", "FindAllStringSubmatch",
    "FindString", "FindStringSubmatch", "HasPrefix", "HasSuffix", "Index",
    "Join", "MatchString", "MustCompile", "ReplaceAll", "ReplaceAllString",
    "Split", "Sprintf", "String", "ToLower", "ToUpper", "Trim", "TrimPrefix",
    "TrimSpace", "TrimSuffix", "WriteByte", "WriteRune", "WriteString",
})

# Error construction and inspection helpers (err.Error, errors.Wrapf).
ERROR_HELPERS: frozenset[str] = frozenset({
    "As", "Cause", "Error", "Errorf", "Is", "Unwrap", "WithMessage",
    "WithStack", "Wrap", "Wrapf",
})

# Synchronization-primitive lifecycle calls (mu.Lock, wg.Wait, once.Do).
SYNC_LIFECYCLE: frozenset[str] = frozenset({
    "Add", "Do", "Done", "Lock", "RLock", "RUnlock", "Signal", "Broadcast",
    "TryLock", "Unlock", "Wait",
})

DENIED_METHODS: dict[str, frozenset[str]] = {
    "string": STRING_HELPERS,
    "error": ERROR_HELPERS,
    "sync": SYNC_LIFECYCLE,
}

# Bare identifiers passed as call arguments with one of these prefixes are
# treated as implicit calls (router.GET("/x", handleIndex)).
HANDLER_PREFIXES: tuple[str, ...] = ("handle", "Handle")


def denied_method_category(method: str) -> str | None:
    """Return the deny-list category that names this method, if any."""
    for category, names in DENIED_METHODS.items():
        if method in names:
            return category
    return None
