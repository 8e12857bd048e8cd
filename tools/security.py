"""Sandboxing policy: destructive-command denylist and workspace path confinement."""

import os
import re

from agent.exceptions import ForbiddenOperationError, PathTraversalError

_PROTECTED_DIRS = r"/(?:etc|root|boot|bin|sbin|usr|lib|lib64|sys|proc)(?:/|\b)"
# Line start, separators, subshells, braces, backticks, quotes or whitespace
_COMMAND_BOUNDARY = r"(?:^|[\s|;&(){}`'\"]|\$\()"

DANGEROUS_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\brm\s+(?:[^|;&]*\s)?-[a-zA-Z]*[rR]"), "recursive delete"),
    (re.compile(r"\brm\s+(?:[^|;&]*\s)?--recursive\b"), "recursive delete"),
    (re.compile(r"--no-preserve-root\b"), "recursive delete"),
    (re.compile(r"\bdd\b[^|;&]*\bof=/dev/"), "raw device write"),
    (re.compile(r">\s*/dev/(?:sd|hd|vd|xvd|nvme|mmcblk|disk)\w*"), "raw device write"),
    (re.compile(r"\bmkfs(?:\.\w+)?\b"), "filesystem format"),
    (re.compile(r"\bmke2fs\b"), "filesystem format"),
    (re.compile(r"\bmkswap\b"), "filesystem format"),
    (
        re.compile(_COMMAND_BOUNDARY + r"(?:sudo|su|doas)(?![\w.-])", re.MULTILINE),
        "privilege escalation",
    ),
    (re.compile(r">>?\s*" + _PROTECTED_DIRS), "write to protected directory"),
    (re.compile(r"\btee\s+(?:-\w+\s+)*" + _PROTECTED_DIRS), "write to protected directory"),
    (
        re.compile(r"\b(?:cp|mv|install|ln|touch|chmod|chown)\b[^|;&\n]*?[\s=\"']" + _PROTECTED_DIRS),
        "write to protected directory",
    ),
    (re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"), "fork bomb"),
]


def find_forbidden_pattern(command: str) -> str | None:
    """Return the label of the first denylisted pattern found in command, if any."""
    for pattern, label in DANGEROUS_PATTERNS:
        if pattern.search(command):
            return label
    return None


def check_command(command: str) -> None:
    """Raise ForbiddenOperationError when command matches the denylist."""
    label = find_forbidden_pattern(command)
    if label:
        raise ForbiddenOperationError(f"Forbidden command detected ({label})")


def resolve_in_base(base_dir: str, path: str) -> str:
    """
    Resolve path against base_dir (following symlinks) and return the absolute
    result. Raise PathTraversalError unless it is base_dir or inside it.
    """
    base = os.path.realpath(base_dir)
    resolved = os.path.realpath(os.path.join(base, path))
    if os.path.commonpath([base, resolved]) != base:
        raise PathTraversalError(f"Path traversal detected: '{path}' is outside the workspace")
    return resolved
