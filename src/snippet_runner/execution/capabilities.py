from __future__ import annotations

import ast
import builtins
import importlib
import string
from types import ModuleType, SimpleNamespace
from typing import Any, Callable, Iterable, Iterator

from .console import ConsoleCapture
from .timers import TimerScheduler

ALLOWED_BUILTINS = frozenset(
    {
        "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes", "callable",
        "chr", "classmethod", "complex", "dict", "divmod", "enumerate", "filter", "float",
        "format", "frozenset", "hash", "hex", "int", "isinstance", "issubclass", "iter",
        "len", "list", "map", "max", "min", "next", "object", "oct", "ord", "pow",
        "property", "range", "repr", "reversed", "round", "set", "slice", "sorted",
        "staticmethod", "str", "sum", "super", "tuple", "type", "zip",
        "Ellipsis", "NotImplemented",
        "ArithmeticError", "AssertionError", "AttributeError", "EOFError", "Exception",
        "ImportError", "IndexError", "KeyError", "LookupError", "ModuleNotFoundError",
        "NameError", "NotImplementedError", "OverflowError", "RecursionError",
        "RuntimeError", "StopIteration", "TypeError", "UnicodeError", "ValueError",
        "ZeroDivisionError",
    }
)
PREBOUND_MODULES = ("math", "json", "datetime", "string", "collections")
ALLOWED_DUNDERS = frozenset({"__init__", "__name__", "__doc__"})
BLOCKED_ATTRIBUTES = frozenset(
    {
        "gi_frame", "gi_code", "gi_yieldfrom", "cr_frame", "cr_code", "cr_await",
        "ag_frame", "ag_code", "f_globals", "f_locals", "f_builtins", "f_back", "f_code",
        "tb_frame", "tb_next", "co_code", "format_map", "mro",
    }
)
SNIPPET_MODULE_NAME = "__snippet__"
# Members that turn strings into attribute lookups.
BLOCKED_MEMBERS = frozenset({"operator.attrgetter", "operator.methodcaller", "string.Formatter"})
# Scope name of the guard wrapped around every `except` clause type.
CATCHABLE_GUARD_NAME = "__catchable__"


class CapabilityViolation(Exception):
    """Raised when source refers to something outside the capability allowlist."""


def _is_dunder(name: str) -> bool:
    """Return True for `__name__`-style identifiers.

    Example:
        ```python
        assert _is_dunder("__class__")
        ```
    """
    return name.startswith("__") and name.endswith("__") and len(name) > 4


def _format_fields(template: str) -> Iterator[str]:
    """Yield every replacement field name in a format template, nested specs included.

    Example:
        ```python
        list(_format_fields("{0:{width}}"))  # ["0", "width"]
        ```
    """
    for _, field_name, format_spec, _ in string.Formatter().parse(template):
        if field_name is not None:
            yield field_name
        if format_spec:
            yield from _format_fields(format_spec)


def _check_format_call(node: ast.Attribute) -> None:
    """Allow `.format` only on string literals whose fields are plain names or positions.

    Field paths like `{0.attr}` or `{0[key]}` are resolved at runtime, out of
    reach of the attribute checks.

    Example:
        ```python
        _check_format_call(ast.parse("'{0.x}'.format(a)").body[0].value.func)  # raises
        ```
    """
    receiver = node.value
    if not (isinstance(receiver, ast.Constant) and isinstance(receiver.value, str)):
        raise CapabilityViolation("'.format' is only permitted on string literals")
    try:
        fields = list(_format_fields(receiver.value))
    except ValueError as exc:
        raise CapabilityViolation(f"malformed format string: {exc}") from None
    for field_name in fields:
        if "." in field_name or "[" in field_name:
            raise CapabilityViolation(f"format field '{field_name}' may not use '.' or '['")


def validate_source(tree: ast.AST) -> None:
    """Reject syntax that reaches around the allowlist.

    Blocks dunder names and attributes (except a few harmless ones), frame and
    code object attributes, `mro`, private names in imports, format templates
    with attribute or item paths, and bare `except:` clauses.

    Example:
        ```python
        validate_source(ast.parse("().__class__"))  # raises CapabilityViolation
        ```
    """
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id.startswith("__") and node.id not in ALLOWED_DUNDERS:
            raise CapabilityViolation(f"use of '{node.id}' is not permitted")
        if isinstance(node, ast.Attribute):
            if node.attr in BLOCKED_ATTRIBUTES:
                raise CapabilityViolation(f"access to '.{node.attr}' is not permitted")
            if _is_dunder(node.attr) and node.attr not in ALLOWED_DUNDERS:
                raise CapabilityViolation(f"access to '.{node.attr}' is not permitted")
            if node.attr == "format":
                _check_format_call(node)
        if isinstance(node, ast.alias) and node.name.split(".")[-1].startswith("_"):
            raise CapabilityViolation(f"import of '{node.name}' is not permitted")
        if isinstance(node, ast.ExceptHandler) and node.type is None:
            raise CapabilityViolation("bare 'except:' is not permitted; name the exception type")


def catchable(value: Any) -> Any:
    """Narrow an `except` clause type to its `Exception` subclasses.

    Anything else, including the deadline interrupt, passes through the handler
    uncaught. Values that are not exception classes are left alone so Python
    reports them as usual.

    Example:
        ```python
        catchable((ValueError, KeyboardInterrupt))  # (ValueError,)
        ```
    """
    items = value if isinstance(value, tuple) else (value,)
    if not all(isinstance(item, type) and issubclass(item, BaseException) for item in items):
        return value
    kept = tuple(item for item in items if issubclass(item, Exception))
    if isinstance(value, tuple) or not kept:
        return kept
    return kept[0]


class _HandlerGuard(ast.NodeTransformer):
    """Route every except clause type through the `catchable` guard."""

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> ast.ExceptHandler:
        """Wrap the handler's type expression in the `catchable` guard.

        Example:
            ```python
            _HandlerGuard().visit(tree)
            ```
        """
        self.generic_visit(node)
        if node.type is not None:
            guard = ast.Name(id=CATCHABLE_GUARD_NAME, ctx=ast.Load())
            node.type = ast.copy_location(ast.Call(func=guard, args=[node.type], keywords=[]), node.type)
        return node


def guard_exception_handlers(tree: ast.Module) -> ast.Module:
    """Rewrite every `except T:` into `except __catchable__(T):` in place.

    Run after `validate_source`, which rejects user references to the guard name.

    Example:
        ```python
        tree = guard_exception_handlers(ast.parse("try:\\n    pass\\nexcept ValueError:\\n    pass"))
        ```
    """
    return ast.fix_missing_locations(_HandlerGuard().visit(tree))


class ModuleView(SimpleNamespace):
    """View of a module exposing only its public attributes."""

    def __repr__(self) -> str:
        """Return a short representation instead of listing every member.

        Example:
            ```python
            repr(module_view(math_module, frozenset({"math"})))  # "<module view 'math'>"
            ```
        """
        return f"<module view '{self.__name__}'>"


def module_view(
    module: ModuleType,
    allowed_roots: frozenset[str],
    cache: dict[str, ModuleView] | None = None,
) -> ModuleView:
    """Wrap `module` so private names and foreign submodules are unreachable.

    Attributes that are themselves modules are kept only when their root
    package is also allowed, and are wrapped the same way.

    Example:
        ```python
        view = module_view(importlib.import_module("statistics"), frozenset({"statistics"}))
        view.mean([1, 2, 3])
        ```
    """
    cache = {} if cache is None else cache
    if module.__name__ in cache:
        return cache[module.__name__]
    view = ModuleView()
    cache[module.__name__] = view
    for name, value in vars(module).items():
        if name.startswith("_") or f"{module.__name__}.{name}" in BLOCKED_MEMBERS:
            continue
        if isinstance(value, ModuleType):
            if value.__name__.split(".")[0] not in allowed_roots:
                continue
            value = module_view(value, allowed_roots, cache)
        setattr(view, name, value)
    view.__name__ = module.__name__
    return view


def safe_import_factory(allowed_modules: Iterable[str]) -> Callable[..., Any]:
    """Build an `__import__` that only yields views of allowlisted modules.

    Example:
        ```python
        safe_import = safe_import_factory(["math"])
        math_view = safe_import("math")
        ```
    """
    allowed_roots = frozenset(allowed_modules)
    cache: dict[str, ModuleView] = {}

    def _safe_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        """Import `name` if its root package is allowlisted.

        Example:
            ```python
            _safe_import("collections", fromlist=("Counter",))
            ```
        """
        if level != 0:
            raise ImportError("Relative imports are not allowed")
        if name == "importlib" or name.startswith("importlib."):
            raise ImportError("Import 'importlib' is blocked")
        root = name.split(".")[0]
        if root not in allowed_roots:
            raise ImportError(f"Import '{name}' is not allowed")
        module = importlib.import_module(name)
        if fromlist:
            return module_view(module, allowed_roots, cache)
        return module_view(importlib.import_module(root), allowed_roots, cache)

    return _safe_import


class StdinReader:
    """`input()` replacement that reads successive lines from supplied text.

    Example:
        ```python
        reader = StdinReader("3\\n4\\n")
        assert reader() == "3"
        ```
    """

    def __init__(self, text: str) -> None:
        """Split `text` into lines for later reads.

        Example:
            ```python
            reader = StdinReader("")
            ```
        """
        self._lines = iter(text.splitlines())

    def __call__(self, prompt: Any = "") -> str:
        """Return the next line or raise EOFError.

        Example:
            ```python
            name = reader("name? ")
            ```
        """
        try:
            return next(self._lines)
        except StopIteration:
            raise EOFError("EOF when reading a line") from None


def build_scope(
    console: ConsoleCapture,
    timers: TimerScheduler,
    *,
    stdin: str = "",
    allowed_modules: Iterable[str] = PREBOUND_MODULES,
) -> dict[str, Any]:
    """Assemble a fresh evaluation scope containing only the capability allowlist.

    Example:
        ```python
        scope = build_scope(ConsoleCapture(stream), TimerScheduler(min_interval_ms=100, max_timeout_ms=5000))
        exec(compile("print(math.pi)", "<snippet>", "exec"), scope)
        ```
    """
    allowed = [name for name in allowed_modules if name != "importlib"]
    safe_import = safe_import_factory(allowed)
    safe_builtins = {name: getattr(builtins, name) for name in sorted(ALLOWED_BUILTINS)}
    safe_builtins["__import__"] = safe_import
    safe_builtins["__build_class__"] = builtins.__build_class__
    safe_builtins["print"] = console.print
    safe_builtins["input"] = StdinReader(stdin)

    scope: dict[str, Any] = {
        "__builtins__": safe_builtins,
        "__name__": SNIPPET_MODULE_NAME,
        CATCHABLE_GUARD_NAME: catchable,
        "console": console.namespace(),
        "set_timeout": timers.set_timeout,
        "clear_timeout": timers.clear,
        "set_interval": timers.set_interval,
        "clear_interval": timers.clear,
    }
    for name in PREBOUND_MODULES:
        if name in allowed:
            scope[name] = safe_import(name)
    return scope
