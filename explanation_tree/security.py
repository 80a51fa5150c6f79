"""
Sanitization and leak scanning for untrusted text.

Child statements are untrusted: before they reach a prompt, control
characters are stripped, secret-shaped substrings are redacted and
prompt-injection phrasings are neutralized. Model output is scanned with
the same patterns, plus a literal check against secret values configured
in the environment.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping

REDACTED_SECRET = "[REDACTED_SECRET]"
REDACTED_INSTRUCTION = "[REDACTED_INSTRUCTION]"

BOUNDARY_BEGIN = "UNTRUSTED_CHILDREN_JSON_BEGIN"
BOUNDARY_END = "UNTRUSTED_CHILDREN_JSON_END"

# Env values shorter than this are too likely to appear by chance.
MIN_CONFIGURED_SECRET_LENGTH = 20
SENSITIVE_ENV_KEY = re.compile(r"(API[_-]?KEY|TOKEN|SECRET|PASSWORD|PRIVATE[_-]?KEY)", re.IGNORECASE)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_LINE_ENDINGS = re.compile(r"\r\n?")

SECRET_PATTERNS = (
    re.compile(r"(?:sk|rk)-[A-Za-z0-9]{20,}"),
    re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"),
    re.compile(r"AIza[0-9A-Za-z\-_]{20,}"),
    re.compile(
        r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----"
    ),
)
# Only the value is redacted; the key name stays readable.
API_KEY_ASSIGNMENT = re.compile(
    r"(api[_-]?key\s*[:=]\s*)([A-Za-z0-9_\-]{10,})", re.IGNORECASE
)

INJECTION_PATTERNS = (
    re.compile(
        r"\bignore\b[\s\S]{0,40}\b(previous|prior|above)\b[\s\S]{0,40}"
        r"\b(instruction|instructions|rule|rules|prompt)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(disregard|override|bypass)\b[\s\S]{0,40}"
        r"\b(instruction|instructions|rule|rules|policy|guardrail|guardrails)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(reveal|print|show|leak|expose)\b[\s\S]{0,40}"
        r"\b(system prompt|hidden prompt|developer message|api[_-]?key|token|password|secret)\b",
        re.IGNORECASE,
    ),
    re.compile(r"UNTRUSTED_CHILDREN_JSON_(BEGIN|END)"),
)


@dataclass(frozen=True)
class SanitizedText:
    text: str
    stripped_control_chars: int = 0
    redacted_secrets: int = 0
    redacted_instructions: int = 0


@dataclass(frozen=True)
class ConfiguredSecret:
    key: str
    value: str


def sanitize_untrusted_text(text: str) -> SanitizedText:
    """Neutralize a piece of untrusted text before it is placed in a prompt."""
    normalized = _LINE_ENDINGS.sub("\n", text)
    cleaned, stripped = _CONTROL_CHARS.subn("", normalized)

    redacted_secrets = 0
    for pattern in SECRET_PATTERNS:
        cleaned, count = pattern.subn(REDACTED_SECRET, cleaned)
        redacted_secrets += count
    cleaned, count = API_KEY_ASSIGNMENT.subn(
        lambda m: m.group(1) + REDACTED_SECRET, cleaned
    )
    redacted_secrets += count

    redacted_instructions = 0
    for pattern in INJECTION_PATTERNS:
        cleaned, count = pattern.subn(REDACTED_INSTRUCTION, cleaned)
        redacted_instructions += count

    return SanitizedText(
        text=cleaned.strip(),
        stripped_control_chars=stripped,
        redacted_secrets=redacted_secrets,
        redacted_instructions=redacted_instructions,
    )


def contains_secret_pattern(text: str) -> bool:
    if any(pattern.search(text) for pattern in SECRET_PATTERNS):
        return True
    return API_KEY_ASSIGNMENT.search(text) is not None


def contains_injection_pattern(text: str) -> bool:
    return any(pattern.search(text) for pattern in INJECTION_PATTERNS)


def collect_configured_secrets(
    environ: Mapping[str, str] | None = None,
) -> list[ConfiguredSecret]:
    """Env values whose key names look sensitive, sorted by key."""
    source = os.environ if environ is None else environ
    secrets = [
        ConfiguredSecret(key=key, value=value.strip())
        for key, value in source.items()
        if SENSITIVE_ENV_KEY.search(key)
        and len(value.strip()) >= MIN_CONFIGURED_SECRET_LENGTH
    ]
    return sorted(secrets, key=lambda s: s.key)


def find_configured_secret_keys(
    text: str,
    secrets: list[ConfiguredSecret],
) -> list[str]:
    """Names of configured secrets whose literal value appears in ``text``."""
    return sorted({secret.key for secret in secrets if secret.value in text})
