"""Secret masking for every text that leaves the process."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

SECRET_ENV_KEYWORDS = ("TOKEN", "SECRET", "KEY", "PASSWORD", "CREDENTIAL", "API_KEY")
MIN_SECRET_LENGTH = 8

# Longer prefixes come first so that sk-ant- wins over sk-. Quantifiers are
# possessive and a match may not run into "...", so masked output is left alone.
_TOKEN_PATTERNS = (
    r"xoxb-[A-Za-z0-9\-]++",
    r"xapp-[A-Za-z0-9\-]++",
    r"xoxp-[A-Za-z0-9\-]++",
    r"xoxs-[A-Za-z0-9\-]++",
    r"sk-ant-[A-Za-z0-9\-]++",
    r"sk-[A-Za-z0-9]{20,}+",
    r"ghp_[A-Za-z0-9]{36,}+",
    r"ghs_[A-Za-z0-9]{36,}+",
    r"gho_[A-Za-z0-9]{36,}+",
    r"github_pat_[A-Za-z0-9_]{20,}+",
    r"glpat-[A-Za-z0-9\-]{20,}+",
    r"Bearer\s+[A-Za-z0-9._\-]{20,}+",
    r"Basic\s+[A-Za-z0-9+/=]{20,}+",
)
SECRET_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(rf"(?:{pattern})(?!\.\.\.)") for pattern in _TOKEN_PATTERNS
)

_PREFIX_RE = re.compile(r"^([a-zA-Z_\-]+[-_])")


def mask_value(value: str) -> str:
    """Shorten a secret to a recognizable but useless form, e.g. ``xoxb-...9f2a``."""
    if len(value) < MIN_SECRET_LENGTH:
        return "***"
    match = _PREFIX_RE.match(value)
    prefix = match.group(1) if match else value[:4]
    return f"{prefix}...{value[-4:]}"


@dataclass(frozen=True)
class KnownSecret:
    value: str
    masked: str


class SecretMasker:
    """Replace known secret values, then anything that looks like a credential.

    Known values are substituted first, longest first, so a secret that contains
    another one is never half-replaced. Pattern matching runs afterwards and only
    catches what the known values missed.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        self._known: list[KnownSecret] = []
        for value in secrets:
            self.register(value)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> SecretMasker:
        env = os.environ if environ is None else environ
        values = [
            value
            for key, value in env.items()
            if value
            and len(value) >= MIN_SECRET_LENGTH
            and any(keyword in key.upper() for keyword in SECRET_ENV_KEYWORDS)
        ]
        return cls(values)

    @property
    def known_count(self) -> int:
        return len(self._known)

    def register(self, value: str | None) -> None:
        if not value or len(value) < MIN_SECRET_LENGTH:
            return
        if any(secret.value == value for secret in self._known):
            return
        self._known.append(KnownSecret(value=value, masked=mask_value(value)))
        self._known.sort(key=lambda secret: len(secret.value), reverse=True)

    def mask_text(self, text: str) -> str:
        if not text:
            return text

        masked = text
        for secret in self._known:
            if secret.value in masked:
                masked = masked.replace(secret.value, secret.masked)

        for pattern in SECRET_PATTERNS:
            masked = pattern.sub(lambda match: mask_value(match.group(0)), masked)
        return masked
