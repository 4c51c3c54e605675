#!/usr/bin/env python3
"""Decision gate for Write Sentry hooks.

Evaluation order for a gated request:
1. Path check: zeroAccessPaths, then readOnlyPaths (first match wins)
2. Content check: contentRules, only for Write requests with content
3. No match: allow

Exit codes produced by run_sentry_hook():
    0 = allow (also used for fail-open faults and dry-run)
    1 = malformed hook input
    2 = block (a "SECURITY:" line on stderr is fed back to Claude)

Design Principles:
- The policy document is loaded once by the hook boundary and passed down.
- classify_path() and scan_content() are pure functions of their arguments.
- Unexpected errors during evaluation follow hookBehavior.onError
  ("allow" by default, i.e. fail-open).
"""

import json
import sys
from typing import Any

from _sentry_paths import get_expansion_context, match_path_pattern
from _sentry_utils import (
    compile_safe_regex,
    is_dry_run,
    load_policy,
    log_sentry,
    safe_regex_search,
    truncate_path,
)

# Tool kinds a hook can gate
TOOL_WRITE = "write"
TOOL_EDIT = "edit"
TOOL_OTHER = "other"

_TOOL_KINDS = {"write": TOOL_WRITE, "edit": TOOL_EDIT}

CATEGORY_ZERO_ACCESS = "zeroAccess"
CATEGORY_READ_ONLY = "readOnly"

# (policy section, category, label used in the block reason), in evaluation order
_PATH_CATEGORIES = (
    ("zeroAccessPaths", CATEGORY_ZERO_ACCESS, "zero-access path"),
    ("readOnlyPaths", CATEGORY_READ_ONLY, "read-only path"),
)

STAGE_PATH = "path"
STAGE_CONTENT = "content"
STAGE_ERROR = "error"

EXIT_ALLOW = 0
EXIT_PARSE_ERROR = 1
EXIT_BLOCK = 2

DEFAULT_CONTENT_REASON = "blocked content pattern"


class RequestParseError(Exception):
    """Hook input could not be parsed into a tool request."""

    pass


def _verdict(blocked: bool = False, reason: str = "", stage: str = "") -> dict[str, Any]:
    return {"blocked": blocked, "reason": reason, "stage": stage}


# ============================================================
# Request Parsing
# ============================================================


def parse_request(raw: str) -> tuple[str, dict[str, Any]]:
    """Parse raw hook input into (tool_name, tool_input).

    A missing or null tool_name or tool_input is treated as empty. Missing
    or odd fields inside tool_input are left for the gate to handle.

    Raises:
        RequestParseError: If the payload is not JSON or not shaped like a
            tool request.
    """
    try:
        data = json.loads(raw)
    except RecursionError as e:
        raise RequestParseError("Invalid JSON input: nesting too deep") from e
    except ValueError as e:
        raise RequestParseError(f"Invalid JSON input: {e}") from e

    if not isinstance(data, dict):
        raise RequestParseError(f"Invalid JSON input: expected an object, got {type(data).__name__}")

    tool_name = data.get("tool_name")
    if tool_name is None:
        tool_name = ""
    if not isinstance(tool_name, str):
        raise RequestParseError(f"Invalid tool_name type: {type(tool_name).__name__}")

    tool_input = data.get("tool_input")
    if tool_input is None:
        tool_input = {}
    if not isinstance(tool_input, dict):
        raise RequestParseError(f"Invalid tool_input type: {type(tool_input).__name__}")

    return tool_name, tool_input


def read_request(stdin) -> str:
    """Read the whole hook input, decoding bytes as UTF-8.

    Raises:
        RequestParseError: If the input is not valid UTF-8.
    """
    try:
        raw = stdin.read()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RequestParseError(f"Invalid input encoding: {e}") from e
    return raw


def resolve_tool_kind(tool_name: str) -> str:
    """Map a tool name to TOOL_WRITE, TOOL_EDIT or TOOL_OTHER (case-insensitive)."""
    if not isinstance(tool_name, str):
        return TOOL_OTHER
    return _TOOL_KINDS.get(tool_name.lower(), TOOL_OTHER)


# ============================================================
# Path Classification
# ============================================================


def classify_path(
    path: str, policy: dict[str, tuple], context: dict[str, str] | None = None
) -> dict[str, Any]:
    """Classify a path against zeroAccessPaths, then readOnlyPaths.

    The read-only list is only consulted when no zero-access pattern matched.
    Empty and non-string patterns are skipped.

    Args:
        path: Candidate file path as given in the tool input.
        policy: Policy document from build_policy_document().
        context: Expansion context shared by all patterns.

    Returns:
        Verdict dict with an added "category" key
        (CATEGORY_ZERO_ACCESS, CATEGORY_READ_ONLY, or "").
    """
    if context is None:
        context = get_expansion_context()

    for section, category, label in _PATH_CATEGORIES:
        for pattern in policy.get(section, ()):
            if not isinstance(pattern, str) or not pattern:
                continue
            if match_path_pattern(path, pattern, context):
                verdict = _verdict(True, f"{label}: {pattern}", STAGE_PATH)
                verdict["category"] = category
                return verdict

    verdict = _verdict()
    verdict["category"] = ""
    return verdict


# ============================================================
# Content Scanning
# ============================================================


def scan_content(path: str, content: str, policy: dict[str, tuple]) -> dict[str, Any]:
    """Scan proposed file content against contentRules.

    Each rule applies only when its filePattern (a plain regex, searched
    anywhere in the path) matches. The first rule whose contentPattern is
    found in the content blocks.

    Raises:
        PatternError: If a rule's regex is invalid, too long, or times out.
    """
    if not content:
        return _verdict()

    for rule in policy.get("contentRules", ()):
        file_pattern = rule.get("filePattern")
        content_pattern = rule.get("contentPattern")
        if not isinstance(file_pattern, str) or not isinstance(content_pattern, str):
            continue
        if not file_pattern or not content_pattern:
            continue

        if safe_regex_search(compile_safe_regex(file_pattern), path) is None:
            continue
        if safe_regex_search(compile_safe_regex(content_pattern), content) is not None:
            reason = rule.get("reason") or DEFAULT_CONTENT_REASON
            return _verdict(True, str(reason), STAGE_CONTENT)

    return _verdict()


# ============================================================
# Decision Gate
# ============================================================


def evaluate_request(
    tool_name: str,
    tool_input: dict[str, Any],
    policy: dict[str, tuple],
    hook_kind: str = TOOL_WRITE,
    on_error: str = "allow",
) -> dict[str, Any]:
    """Decide whether a tool request may proceed.

    Args:
        tool_name: Tool name from the hook input.
        tool_input: tool_input object from the hook input.
        policy: Policy document, never modified here.
        hook_kind: The tool kind this hook gates. Other kinds are allowed
            without any check.
        on_error: "allow" (fail-open) or "deny" for unexpected errors.

    Returns:
        Verdict dict. stage is STAGE_ERROR when an internal error decided it.
    """
    if resolve_tool_kind(tool_name) != hook_kind:
        return _verdict()

    try:
        file_path = tool_input.get("file_path", "")
        if not isinstance(file_path, str) or not file_path:
            log_sentry("WARN", f"{tool_name} called without file_path")
            return _verdict()

        path_verdict = classify_path(file_path, policy, get_expansion_context())
        if path_verdict["blocked"]:
            return _verdict(True, path_verdict["reason"], STAGE_PATH)

        if hook_kind != TOOL_WRITE:
            return _verdict()

        content = tool_input.get("content", "")
        if not isinstance(content, str) or not content:
            return _verdict()

        return scan_content(file_path, content, policy)
    except Exception as e:
        reason = f"internal error ({type(e).__name__}: {e})"
        log_sentry("ERROR", f"Error evaluating {tool_name}: {type(e).__name__}: {e}")
        return _verdict(on_error == "deny", reason, STAGE_ERROR)


# ============================================================
# Hook Boundary
# ============================================================


def format_block_message(hook_kind: str, verdict: dict[str, Any], file_path: str) -> str:
    """Render the diagnostic for a blocked request (without "SECURITY: ")."""
    if verdict["stage"] == STAGE_PATH:
        return f"Blocked {hook_kind} to {verdict['reason']}: {file_path}"
    return f"Blocked {hook_kind} due to {verdict['reason']}: {file_path}"


def run_sentry_hook(hook_kind: str, stdin=None, stderr=None) -> int:
    """Run the sentry for one hook invocation.

    Reads the whole request from stdin, evaluates it, and writes
    diagnostics to stderr.

    Args:
        hook_kind: TOOL_WRITE or TOOL_EDIT.
        stdin: Input stream, text or binary (defaults to sys.stdin.buffer).
        stderr: Diagnostic stream (defaults to sys.stderr).

    Returns:
        Process exit code (EXIT_ALLOW, EXIT_PARSE_ERROR or EXIT_BLOCK).
    """
    stdin = sys.stdin.buffer if stdin is None else stdin
    stderr = sys.stderr if stderr is None else stderr

    try:
        tool_name, tool_input = parse_request(read_request(stdin))
    except RequestParseError as e:
        log_sentry("ERROR", f"Malformed hook input: {e}")
        print(f"Error: {e}", file=stderr)
        return EXIT_PARSE_ERROR

    if resolve_tool_kind(tool_name) != hook_kind:
        return EXIT_ALLOW

    policy, behavior = load_policy()
    verdict = evaluate_request(tool_name, tool_input, policy, hook_kind, behavior["onError"])

    file_path = tool_input.get("file_path", "")
    if not isinstance(file_path, str):
        file_path = ""
    path_preview = truncate_path(file_path)

    if verdict["stage"] == STAGE_ERROR:
        print(f"Hook error: {verdict['reason']}", file=stderr)

    if not verdict["blocked"]:
        if file_path:
            log_sentry("ALLOW", f"{tool_name}: {path_preview}")
        return EXIT_ALLOW

    message = format_block_message(hook_kind, verdict, file_path)
    log_sentry("BLOCK", format_block_message(hook_kind, verdict, path_preview))

    if is_dry_run():
        log_sentry("DRY-RUN", f"Would BLOCK {tool_name}: {path_preview}")
        return EXIT_ALLOW

    print(f"SECURITY: {message}", file=stderr)
    return EXIT_BLOCK
