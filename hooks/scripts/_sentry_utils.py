#!/usr/bin/env python3
"""Shared utilities for the Write Sentry hooks.

This module provides the ambient pieces every sentry hook needs:
- Configuration loading from config.json (resolution chain + fallback)
- Config validation and the immutable policy document
- ReDoS-safe regex compilation and search
- Dry-run mode support
- Logging with rotation

Config resolution chain (3-step):
    1. $CLAUDE_PROJECT_DIR/.claude/sentry/config.json (user custom)
    2. $CLAUDE_PLUGIN_ROOT/assets/sentry.default.json (plugin default)
    3. Hardcoded _FALLBACK_CONFIG (emergency fallback)

Usage:
    from _sentry_utils import (
        load_sentry_config,
        build_policy_document,
        get_hook_behavior,
        log_sentry,
    )

Note on log_sentry():
    - Silent fail if CLAUDE_PROJECT_DIR not set
    - Silent fail on file write errors
    - This is intentional to avoid breaking hooks on logging issues

Design Principles:
    1. Config is loaded once per hook invocation and passed down explicitly.
       There is no module-level config cache.
    2. Config problems never crash the hook: they are logged and the next
       resolution step (or the fallback) is used.
    3. Every regex from config is length-capped and searched with a timeout.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import regex

# ============================================================
# Constants
# ============================================================

DRY_RUN_ENV = "CLAUDE_HOOK_DRY_RUN"
"""Environment variable to enable dry-run mode.
Set to "1", "true", or "yes" to enable."""

CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
"""Environment variable naming the Claude configuration directory.
Patterns may start with $CLAUDE_CONFIG_DIR or ${CLAUDE_CONFIG_DIR}."""

MAX_PATTERN_LENGTH = 1_000
"""Maximum length of any path or content pattern taken from config."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display. Paths longer than this are truncated."""

MAX_LOG_SIZE_BYTES = 1_000_000
"""Maximum log file size before rotation (1 MB)."""

REGEX_TIMEOUT_SECONDS = 0.5
"""Timeout for a single regex search to prevent ReDoS."""

ON_ERROR_ACTIONS = ("allow", "deny")
"""Valid values for hookBehavior.onError."""

POLICY_SECTIONS = ("zeroAccessPaths", "readOnlyPaths", "contentRules")


class PatternError(Exception):
    """A configured pattern could not be compiled or evaluated safely."""

    pass


# Hardcoded fallback config for when config.json is missing/corrupted
# This ensures credentials are ALWAYS protected even if config fails to load
_FALLBACK_CONFIG = {
    "hookBehavior": {"onError": "allow"},
    "zeroAccessPaths": [
        "~/.ssh/",
        "~/.gnupg/",
        "~/.aws/",
        "~/.config/gh/",
        "*.pem",
        "*.key",
    ],
    "readOnlyPaths": [
        "/etc/",
        "~/.bashrc",
        "~/.zshrc",
        "~/.profile",
        "$CLAUDE_CONFIG_DIR/settings.json",
    ],
    "contentRules": [
        {
            "filePattern": ".*",
            "contentPattern": r"-----BEGIN[A-Z ]*PRIVATE KEY-----",
            "reason": "[FALLBACK] embedded private key",
        },
        {
            "filePattern": ".*",
            "contentPattern": r"AKIA[A-Z0-9]{16}",
            "reason": "[FALLBACK] AWS access key ID",
        },
        {
            "filePattern": ".*",
            "contentPattern": r"ghp_[a-zA-Z0-9]{36}",
            "reason": "[FALLBACK] GitHub personal access token",
        },
    ],
}


# ============================================================
# Environment
# ============================================================


def get_project_dir() -> str:
    """Get project directory from environment variable.

    Returns:
        Project directory path, or empty string if not set or not a directory.
    """
    project_dir = os.environ.get("CLAUDE_PROJECT_DIR", "")
    if not project_dir:
        return ""

    # Note: Cannot call log_sentry() here - log_sentry() calls get_project_dir()
    if not os.path.isdir(project_dir):
        return ""

    return project_dir


def _get_plugin_root() -> str:
    """Get the plugin root directory from environment variable."""
    return os.environ.get("CLAUDE_PLUGIN_ROOT", "")


def get_config_base_dir() -> str:
    """Resolve the directory $CLAUDE_CONFIG_DIR stands for in patterns.

    Defaults to ~/.claude when the variable is unset or empty.
    """
    base_dir = os.environ.get(CONFIG_DIR_ENV, "")
    if base_dir:
        return base_dir
    return str(Path.home() / ".claude")


# ============================================================
# Dry-Run Mode
# ============================================================


def is_dry_run() -> bool:
    """Check if running in dry-run (simulation) mode.

    In dry-run mode, hooks log what they WOULD block but always
    exit with the allow status.

    Enable by setting environment variable:
        CLAUDE_HOOK_DRY_RUN=1

    Returns:
        True if dry-run mode is enabled.
    """
    value = os.environ.get(DRY_RUN_ENV, "").lower()
    return value in ("1", "true", "yes")


# ============================================================
# Logging with Rotation
# ============================================================


def _rotate_log_if_needed(log_file: Path) -> None:
    """Rotate log file if it exceeds MAX_LOG_SIZE_BYTES.

    Keeps exactly one backup (.log.1). Silent fail on any error.
    """
    try:
        if not log_file.exists():
            return

        if log_file.stat().st_size < MAX_LOG_SIZE_BYTES:
            return

        backup_file = log_file.with_suffix(".log.1")

        # On Windows, we need to remove the target first if it exists
        if backup_file.exists():
            backup_file.unlink()

        log_file.rename(backup_file)

    except OSError:
        # Rotation is non-critical
        pass


def get_log_file() -> Path | None:
    """Return the sentry log file path, or None without a project dir."""
    project_dir = get_project_dir()
    if not project_dir:
        return None
    return Path(project_dir) / ".claude" / "sentry" / "sentry.log"


def log_sentry(level: str, message: str) -> None:
    """Log a sentry event to sentry.log.

    Log format:
        TIMESTAMP [LEVEL] [DRY-RUN] MESSAGE

    Features:
    - Automatic rotation when log exceeds MAX_LOG_SIZE_BYTES
    - Keeps one backup file (.log.1) for debugging
    - Silent fail on any error - never breaks hook execution

    Args:
        level: Log level (INFO, WARN, ERROR, BLOCK, ALLOW, DRY-RUN)
        message: Message to log.
    """
    log_file = get_log_file()
    if log_file is None:
        return

    try:
        timestamp = datetime.now().isoformat(timespec="seconds")
        mode = "[DRY-RUN] " if is_dry_run() else ""
        line = f"{timestamp} [{level}] {mode}{message}\n"

        log_file.parent.mkdir(parents=True, exist_ok=True)
        _rotate_log_if_needed(log_file)

        with open(log_file, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError:
        # Silent fail - don't break hook on log error
        pass


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display in logs.

    Shows the end of the path (most relevant part) with ... prefix.
    """
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


# ============================================================
# Safe Regex (ReDoS Prevention)
# ============================================================


def compile_safe_regex(pattern: str, flags: int = 0) -> "regex.Pattern":
    """Compile a config-supplied regex after enforcing the length cap.

    Raises:
        PatternError: If the pattern is too long or not a valid regex.
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise PatternError(
            f"Pattern exceeds {MAX_PATTERN_LENGTH} characters: {pattern[:50]}..."
        )
    try:
        return regex.compile(pattern, flags)
    except regex.error as e:
        raise PatternError(f"Invalid regex '{pattern[:50]}': {e}") from e


def _run_with_timeout(search, compiled, text: str, timeout: float):
    try:
        return search(text, timeout=timeout)
    except TimeoutError as e:
        log_sentry("WARN", f"Regex timeout ({timeout}s) for pattern: {compiled.pattern[:50]}")
        raise PatternError(f"Regex timed out after {timeout}s: {compiled.pattern[:50]}") from e


def safe_regex_search(
    compiled: "regex.Pattern",
    text: str,
    timeout: float = REGEX_TIMEOUT_SECONDS,
) -> "regex.Match | None":
    """Search with a timeout so a pathological pattern cannot hang the hook.

    Raises:
        PatternError: If the search times out.
    """
    return _run_with_timeout(compiled.search, compiled, text, timeout)


def safe_regex_fullmatch(
    compiled: "regex.Pattern",
    text: str,
    timeout: float = REGEX_TIMEOUT_SECONDS,
) -> "regex.Match | None":
    """Anchored counterpart of safe_regex_search()."""
    return _run_with_timeout(compiled.fullmatch, compiled, text, timeout)


# ============================================================
# Configuration
# ============================================================


def _read_config_file(config_path: Path) -> dict[str, Any] | None:
    """Read one config file. Returns None (after logging) when unusable."""
    try:
        with open(config_path, encoding="utf-8") as f:
            config = json.load(f)
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError
        log_sentry(
            "ERROR",
            f"[FALLBACK] Invalid JSON in {config_path}: {e}\n"
            "  Using next config source. Fix JSON syntax to restore full sentry config.",
        )
        return None
    except OSError as e:
        log_sentry(
            "ERROR",
            f"[FALLBACK] Failed to read {config_path}: {e}\n  Check file permissions.",
        )
        return None

    if not isinstance(config, dict):
        log_sentry(
            "ERROR",
            f"[FALLBACK] {config_path} must contain a JSON object, got {type(config).__name__}",
        )
        return None

    for problem in validate_sentry_config(config):
        log_sentry("WARN", f"Config validation: {problem}")
    return config


def load_sentry_config() -> tuple[dict[str, Any], str | None]:
    """Load config.json following the resolution chain.

    Called once per hook invocation; the result is passed down explicitly.

    Returns:
        (config, source) tuple. source is the path of the file that was
        loaded, or None when the hardcoded fallback is in use.
        Never raises exceptions - returns the fallback on any error.
    """
    project_dir = get_project_dir()

    # Step 1 -- User custom config in .claude/sentry/
    if project_dir:
        config_path = Path(project_dir) / ".claude" / "sentry" / "config.json"
        if config_path.exists():
            config = _read_config_file(config_path)
            if config is not None:
                log_sentry("INFO", f"Loaded config from {config_path}")
                return config, str(config_path)

    # Step 2 -- Plugin default config
    plugin_root = _get_plugin_root()
    if plugin_root:
        default_config_path = Path(plugin_root) / "assets" / "sentry.default.json"
        if default_config_path.exists():
            config = _read_config_file(default_config_path)
            if config is not None:
                log_sentry("INFO", f"Using plugin default config from {default_config_path}")
                return config, str(default_config_path)

    # Step 3 -- Hardcoded fallback
    if not project_dir:
        log_sentry(
            "WARN",
            "[FALLBACK] CLAUDE_PROJECT_DIR not set - using minimal fallback config.",
        )
    else:
        log_sentry(
            "WARN",
            "[FALLBACK] No config.json found in any location.\n"
            "  Searched: .claude/sentry/config.json"
            + (", plugin default" if plugin_root else "")
            + "\n  Using minimal fallback config.",
        )
    return _FALLBACK_CONFIG, None


def validate_sentry_config(config: dict) -> list[str]:
    """Validate sentry configuration.

    Checks:
    - Policy sections are lists
    - Path patterns are non-empty strings within MAX_PATTERN_LENGTH
    - Content rules are objects with compilable filePattern/contentPattern
    - hookBehavior.onError is a known action

    Args:
        config: Loaded configuration dictionary.

    Returns:
        List of validation error messages (empty if valid).
    """
    errors = []

    for section in ("zeroAccessPaths", "readOnlyPaths"):
        paths = config.get(section, [])
        if not isinstance(paths, list):
            errors.append(f"{section} must be a list")
            continue
        for i, path in enumerate(paths):
            if not isinstance(path, str):
                errors.append(f"{section}[{i}] must be a string, got {type(path).__name__}")
            elif not path:
                errors.append(f"{section}[{i}] is empty and will be ignored")
            elif len(path) > MAX_PATTERN_LENGTH:
                errors.append(f"{section}[{i}] exceeds {MAX_PATTERN_LENGTH} characters")

    rules = config.get("contentRules", [])
    if not isinstance(rules, list):
        errors.append("contentRules must be a list")
        rules = []
    for i, rule in enumerate(rules):
        if not isinstance(rule, dict):
            errors.append(f"contentRules[{i}] must be an object")
            continue
        for field in ("filePattern", "contentPattern"):
            pattern = rule.get(field)
            if not isinstance(pattern, str) or not pattern:
                errors.append(f"contentRules[{i}] missing '{field}' field")
                continue
            try:
                compile_safe_regex(pattern)
            except PatternError as e:
                errors.append(f"contentRules[{i}].{field}: {e}")
        if not isinstance(rule.get("reason", ""), str):
            errors.append(f"contentRules[{i}].reason must be a string")

    hook_behavior = config.get("hookBehavior", {})
    if not isinstance(hook_behavior, dict):
        errors.append("hookBehavior must be an object")
    else:
        on_error = hook_behavior.get("onError", "allow")
        if on_error not in ON_ERROR_ACTIONS:
            errors.append(f"Invalid hookBehavior.onError: {on_error} (must be: {ON_ERROR_ACTIONS})")

    return errors


def get_hook_behavior(config: dict[str, Any]) -> dict[str, Any]:
    """Get hookBehavior section from config with defaults applied.

    An unrecognized onError value falls back to the default ("allow").
    """
    defaults = {"onError": "allow"}
    behavior = config.get("hookBehavior", {})
    if not isinstance(behavior, dict):
        return defaults
    merged = {**defaults, **behavior}
    if merged["onError"] not in ON_ERROR_ACTIONS:
        merged["onError"] = defaults["onError"]
    return merged


def build_policy_document(config: dict[str, Any]) -> dict[str, tuple]:
    """Extract the immutable policy document from a loaded config.

    Sequences become tuples and each content rule is copied, so the
    document shares no mutable state with the config it came from.
    Malformed sections are treated as empty and unusable path patterns
    (empty, non-string or over MAX_PATTERN_LENGTH) are dropped; validation
    already warned about both.
    """
    policy = {}
    for section in POLICY_SECTIONS:
        entries = config.get(section, [])
        if not isinstance(entries, list):
            entries = []
        if section == "contentRules":
            policy[section] = tuple(dict(rule) for rule in entries if isinstance(rule, dict))
        else:
            policy[section] = tuple(
                p for p in entries if isinstance(p, str) and p and len(p) <= MAX_PATTERN_LENGTH
            )
    return policy


def load_policy() -> tuple[dict[str, tuple], dict[str, Any]]:
    """Load config once and return (policy_document, hook_behavior)."""
    config, _source = load_sentry_config()
    return build_policy_document(config), get_hook_behavior(config)


# ============================================================
# Module Self-Test (when run directly)
# ============================================================


if __name__ == "__main__":
    config, source = load_sentry_config()
    print("_sentry_utils.py - Module loaded successfully")
    print(f"Project dir: {get_project_dir()}")
    print(f"Plugin root: {_get_plugin_root()}")
    print(f"Config base dir: {get_config_base_dir()}")
    print(f"Dry-run mode: {is_dry_run()}")
    print(f"Config source: {source or 'fallback'}")
    print(f"Config problems: {validate_sentry_config(config)}")
