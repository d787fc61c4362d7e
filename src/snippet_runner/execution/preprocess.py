"""Source rewrites that let the fallback C++ interpreter accept typical snippets.

Each step is a named pure function so it can be exercised on its own; the
pipeline applies them in a fixed order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable

COMPAT_SHIM = "using namespace std;"
NAMESPACE_QUALIFIER = "std::"

_INVISIBLE_CHARS = re.compile("[\u200b-\u200d\ufeff]")
_NON_ASCII = re.compile(r"[^\x00-\x7f]")
_FIRST_INCLUDE = re.compile(r"(#include\s*<[^>]+>)")


@dataclass(frozen=True, slots=True)
class SourceTransform:
    """A named `str -> str` rewrite step.

    Example:
        ```python
        step = SourceTransform("trim", str.strip)
        ```
    """

    name: str
    apply: Callable[[str], str]


def strip_invisible_chars(source: str) -> str:
    """Remove zero-width spaces, joiners, and byte-order marks.

    Example:
        ```python
        strip_invisible_chars("int\\u200b x;")  # "int x;"
        ```
    """
    return _INVISIBLE_CHARS.sub("", source)


def normalize_newlines(source: str) -> str:
    """Convert CRLF and lone CR line endings to LF.

    Example:
        ```python
        normalize_newlines("a\\r\\nb")  # "a\\nb"
        ```
    """
    return source.replace("\r\n", "\n").replace("\r", "\n")


def ascii_filter(source: str) -> str:
    """Drop every codepoint outside 7-bit ASCII.

    Example:
        ```python
        ascii_filter('cout << "héllo";')  # 'cout << "hllo";'
        ```
    """
    return _NON_ASCII.sub("", source)


def trim(source: str) -> str:
    """Strip leading and trailing whitespace.

    Example:
        ```python
        trim("  int main() {}\\n")  # "int main() {}"
        ```
    """
    return source.strip()


def inject_compat_shim(source: str) -> str:
    """Add `using namespace std;` after the first system include unless already present.

    Example:
        ```python
        inject_compat_shim("#include <iostream>\\nint main() {}")
        ```
    """
    if COMPAT_SHIM in source:
        return source
    return _FIRST_INCLUDE.sub(lambda match: f"{match.group(1)}\n{COMPAT_SHIM}", source, count=1)


def strip_namespace_qualifier(source: str) -> str:
    """Remove every `std::` qualifier.

    Example:
        ```python
        strip_namespace_qualifier("std::cout << 1;")  # "cout << 1;"
        ```
    """
    return source.replace(NAMESPACE_QUALIFIER, "")


PREPROCESS_PIPELINE: tuple[SourceTransform, ...] = (
    SourceTransform("strip-invisible-chars", strip_invisible_chars),
    SourceTransform("normalize-newlines", normalize_newlines),
    SourceTransform("ascii-filter", ascii_filter),
    SourceTransform("trim", trim),
    SourceTransform("inject-compat-shim", inject_compat_shim),
    SourceTransform("strip-namespace-qualifier", strip_namespace_qualifier),
)


def preprocess_source(
    source: str,
    pipeline: Iterable[SourceTransform] = PREPROCESS_PIPELINE,
) -> str:
    """Apply each transform in order.

    Example:
        ```python
        ready = preprocess_source(raw_cpp)
        ```
    """
    for step in pipeline:
        source = step.apply(source)
    return source
