#!/usr/bin/env python3
"""Path expansion and pattern matching for Write Sentry.

A configured path pattern is matched with one of three strategies,
chosen in this order:

1. Directory prefix: the expanded pattern ends with "/".
   "~/.ssh/" matches "~/.ssh" and everything below it.
2. Glob: the raw pattern contains any of * ? [ ].
   "**" crosses "/", "*" and "?" never do, "[!...]" is a negated class.
   Both the full path and its basename are tried.
3. Literal: equality, a "/<pattern>" suffix, or a prefix match.

Expansion ($CLAUDE_CONFIG_DIR, ${CLAUDE_CONFIG_DIR}, ~) is applied to the
pattern and to the candidate path with the same context, so an expanded
value is never compared against an unexpanded one.

A glob that cannot be translated (e.g. unbalanced brackets) degrades to
literal matching with a warning instead of raising.
"""

from pathlib import Path
from typing import Callable

import regex

from _sentry_utils import (
    MAX_PATTERN_LENGTH,
    PatternError,
    get_config_base_dir,
    log_sentry,
    safe_regex_fullmatch,
)

BASE_DIR_MARKERS = ("${CLAUDE_CONFIG_DIR}", "$CLAUDE_CONFIG_DIR")
HOME_MARKER = "~"
GLOB_CHARS = frozenset("*?[]")


# ============================================================
# Path Expansion
# ============================================================


def get_expansion_context() -> dict[str, str]:
    """Snapshot the values path markers expand to."""
    return {"home": str(Path.home()), "base_dir": get_config_base_dir()}


def expand_path_vars(path: str, context: dict[str, str] | None = None) -> str:
    """Replace a leading base-dir marker and a leading ~ in path.

    Unrecognized markers ($HOME, %USERPROFILE%, ...) pass through unchanged.

    Args:
        path: Path or pattern text.
        context: Expansion context from get_expansion_context().
            Captured fresh when omitted.

    Returns:
        The expanded string.
    """
    if context is None:
        context = get_expansion_context()

    for marker in BASE_DIR_MARKERS:
        if path.startswith(marker):
            path = context["base_dir"] + path[len(marker) :]
            break

    # Runs after the base-dir step so a base dir given as "~/..." expands too
    if path.startswith(HOME_MARKER):
        path = context["home"] + path[len(HOME_MARKER) :]

    return path


# ============================================================
# Glob Translation
# ============================================================


def is_glob_pattern(pattern: str) -> bool:
    """Check if a pattern contains glob metacharacters."""
    return any(c in GLOB_CHARS for c in pattern)


def glob_to_regex(pattern: str) -> str:
    """Translate a glob pattern into a regex body.

    The result is meant for full-string matching (fullmatch).

    Raises:
        PatternError: On unbalanced bracket syntax.
    """
    parts = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                parts.append(".*")
                i += 2
                while i < n and pattern[i] == "*":
                    i += 1
                continue
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                raise PatternError(f"Unbalanced '[' in glob pattern: {pattern}")
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            parts.append(f"[{body}]")
            i = end + 1
            continue
        elif c == "]":
            raise PatternError(f"Unbalanced ']' in glob pattern: {pattern}")
        else:
            parts.append(regex.escape(c))
        i += 1
    return "".join(parts)


# ============================================================
# Pattern Compilation
# ============================================================


def compile_path_pattern(
    pattern: str, context: dict[str, str] | None = None
) -> Callable[[str], bool]:
    """Build a matcher for one configured path pattern.

    Args:
        pattern: Raw pattern text from config.
        context: Expansion context shared with the candidate paths.

    Returns:
        A function taking a raw candidate path and returning True on match.

    Raises:
        PatternError: If the pattern exceeds MAX_PATTERN_LENGTH.
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise PatternError(
            f"Path pattern exceeds {MAX_PATTERN_LENGTH} characters: {pattern[:50]}..."
        )
    if context is None:
        context = get_expansion_context()

    expanded_pattern = expand_path_vars(pattern, context)

    if expanded_pattern.endswith("/"):
        prefix = expanded_pattern[:-1]

        def match_directory(path: str) -> bool:
            return expand_path_vars(path, context).startswith(prefix)

        return match_directory

    if is_glob_pattern(pattern):
        try:
            compiled = regex.compile(glob_to_regex(expanded_pattern))
        except (PatternError, regex.error) as e:
            log_sentry("WARN", f"Glob '{pattern}' treated as literal: {e}")
        else:

            def match_glob(path: str) -> bool:
                expanded_path = expand_path_vars(path, context)
                if safe_regex_fullmatch(compiled, expanded_path):
                    return True
                basename = expanded_path.rsplit("/", 1)[-1]
                return safe_regex_fullmatch(compiled, basename) is not None

            return match_glob

    def match_literal(path: str) -> bool:
        expanded_path = expand_path_vars(path, context)
        return (
            expanded_path == expanded_pattern
            or expanded_path.endswith("/" + pattern)
            or expanded_path.startswith(expanded_pattern)
        )

    return match_literal


def match_path_pattern(path: str, pattern: str, context: dict[str, str] | None = None) -> bool:
    """Check a single path against a single pattern."""
    return compile_path_pattern(pattern, context)(path)
