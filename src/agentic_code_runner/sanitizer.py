"""Code sanitizer: strips presentation wrappers and applies the deny-list.

The deny-list is a best-effort text match. It can block benign code that
happens to contain a listed spelling and it misses dangerous calls that are
spelled differently. It is not a sandbox.
"""

import re
from dataclasses import dataclass
from typing import Pattern, Tuple


PROCESS_SPAWNING = "process spawning"
DESTRUCTIVE_FILE_OPS = "destructive file operations"
SYSTEM_SETTINGS = "registry/system-settings access"
NETWORK_CLIENT = "network client instantiation"
PROCESS_TERMINATION = "process termination"
DYNAMIC_CODE = "reflection/dynamic-code emission"
NATIVE_INTEROP = "native interop"


# Ordered; the first matching rule is the one reported.
FORBIDDEN_PATTERNS = [
    (PROCESS_SPAWNING, r"\bsubprocess\b"),
    (PROCESS_SPAWNING, r"\bos\.(system|popen|spawn\w*|exec\w*|fork\w*|posix_spawn\w*)\b"),
    (PROCESS_SPAWNING, r"\b(pty\.spawn|multiprocessing)\b"),
    (DESTRUCTIVE_FILE_OPS, r"\bos\.(remove|unlink|rmdir|removedirs|rename|renames|replace|truncate)\b"),
    (DESTRUCTIVE_FILE_OPS, r"\bshutil\.(rmtree|move|chown)\b"),
    (DESTRUCTIVE_FILE_OPS, r"\.(unlink|rmdir)\s*\("),
    (SYSTEM_SETTINGS, r"\b_?winreg\b"),
    (SYSTEM_SETTINGS, r"\bos\.(chmod|chown|chroot|setuid|setgid|putenv|unsetenv)\b"),
    (NETWORK_CLIENT, r"\bsocket\.(socket|create_connection)\b"),
    (NETWORK_CLIENT, r"\b(urllib\.request|http\.client|ftplib|smtplib|telnetlib)\b"),
    (NETWORK_CLIENT, r"\b(requests|httpx|aiohttp)\.(get|post|put|patch|delete|request|session|client|asyncclient|clientsession)\b"),
    (PROCESS_TERMINATION, r"\b(sys\.exit|os\._exit|os\.abort|os\.kill|os\.killpg)\b"),
    (PROCESS_TERMINATION, r"(?<![\w.])(exit|quit)\s*\("),
    (DYNAMIC_CODE, r"(?<![\w.])(eval|exec|compile)\s*\("),
    (DYNAMIC_CODE, r"\b(__import__|importlib|marshal|types\.CodeType)\b"),
    (NATIVE_INTEROP, r"\b(ctypes|cffi)\b"),
]

_FENCE_BLOCK = re.compile(r"```[\w+.-]*[ \t]*\n?(.*?)```", re.DOTALL)
_FENCE_MARKER = re.compile(r"^[ \t]*```[\w+.-]*[ \t]*$", re.MULTILINE)


class SecurityViolation(Exception):
    """Raised when code matches a forbidden pattern."""

    def __init__(self, pattern: str, category: str = ""):
        self.pattern = pattern
        self.category = category
        super().__init__(f"Code contains potentially dangerous operation: {pattern}")


class EmptyCodeError(ValueError):
    """Raised when there is no code left after cleaning."""
    pass


@dataclass(frozen=True)
class SecurityRule:
    category: str
    pattern: str
    regex: Pattern[str]


@dataclass(frozen=True)
class SecurityPolicy:
    """Ordered, immutable set of forbidden patterns."""
    rules: Tuple[SecurityRule, ...]

    @classmethod
    def from_patterns(cls, patterns) -> "SecurityPolicy":
        """
        Build a policy from (category, regex) pairs.

        Patterns are compiled once, case-insensitive, and kept in order.
        """
        return cls(rules=tuple(
            SecurityRule(category, pattern, re.compile(pattern, re.IGNORECASE))
            for category, pattern in patterns
        ))

    def first_violation(self, code: str):
        """Return the first rule that matches, or None."""
        for rule in self.rules:
            if rule.regex.search(code):
                return rule
        return None


DEFAULT_POLICY = SecurityPolicy.from_patterns(FORBIDDEN_PATTERNS)


def strip_fences(text: str) -> str:
    """
    Remove markdown code fences and surrounding whitespace.

    If the text holds fenced blocks, only their bodies are kept (joined by a
    newline) so prose around the code is dropped. A fence without a closing
    marker, as in a truncated reply, is removed on its own.
    """
    blocks = _FENCE_BLOCK.findall(text)
    if blocks:
        text = "\n".join(block.strip("\n") for block in blocks)
    text = _FENCE_MARKER.sub("", text)
    return text.strip()


def sanitize_code(raw: str, policy: SecurityPolicy = DEFAULT_POLICY) -> str:
    """
    Clean AI-returned text and enforce the security policy.

    Args:
        raw: Text as returned by the AI provider or supplied by the operator
        policy: Forbidden patterns, checked in order

    Returns:
        The cleaned code, ready for the execution engine

    Raises:
        EmptyCodeError: If nothing is left after cleaning
        SecurityViolation: On the first forbidden pattern found
    """
    if raw is None or not raw.strip():
        raise EmptyCodeError("Code input cannot be empty")

    code = strip_fences(raw)
    if not code:
        raise EmptyCodeError("Code input cannot be empty")

    rule = policy.first_violation(code)
    if rule is not None:
        raise SecurityViolation(rule.pattern, rule.category)

    return code
