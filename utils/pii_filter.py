# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License in the project root for
# license information.
# --------------------------------------------------------------------------
"""
PII and secret scrubbing for widget logs.

Call placement logs carry phone numbers, ACS user tokens and occasionally a
connection string. This module redacts them before a record is emitted.

Configuration via environment variables:
- LOG_PII_SCRUBBING_ENABLED: Enable/disable scrubbing (default: true)
- LOG_PII_SCRUB_PHONE_NUMBERS: Scrub E.164 / US phone numbers (default: true)
- LOG_PII_SCRUB_TOKENS: Scrub JWT-shaped bearer tokens (default: true)
- LOG_PII_SCRUB_ACCESS_KEYS: Scrub ``accesskey=`` values (default: true)
- LOG_PII_CUSTOM_PATTERNS: JSON array of ``{"pattern": ..., "replacement": ...}``
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from re import Pattern
from typing import Any

logger = logging.getLogger(__name__)

# Each tuple: (pattern, replacement, kind)
_PII_PATTERNS: list[tuple[Pattern[str], str, str]] = [
    # Connection string access keys must go before anything base64-ish is touched
    (
        re.compile(r"(?i)(accesskey=)[^;\s\"']+"),
        r"\1[KEY_REDACTED]",
        "access_key",
    ),
    # JWT: three base64url segments, the first starting with eyJ
    (
        re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
        "[TOKEN_REDACTED]",
        "token",
    ),
    # E.164 numbers (+14155550123) and common US formats
    (
        re.compile(r"(?<![\w:])\+\d{7,15}\b"),
        "[PHONE_REDACTED]",
        "phone_number",
    ),
    (
        re.compile(r"\(?\b\d{3}\)?[-.\s]\d{3}[-.\s]\d{4}\b"),
        "[PHONE_REDACTED]",
        "phone_number",
    ),
]

# Attribute names whose values are replaced outright
REDACT_ATTRIBUTE_NAMES = frozenset(
    [
        "token",
        "raw_token",
        "access_token",
        "connection_string",
        "accesskey",
        "secret",
        "authorization",
    ]
)


@dataclass
class PIIScrubberConfig:
    """Configuration for scrubbing behaviour."""

    enabled: bool = True
    scrub_phone_numbers: bool = True
    scrub_tokens: bool = True
    scrub_access_keys: bool = True
    custom_patterns: list[tuple[Pattern[str], str]] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> PIIScrubberConfig:
        def _bool_env(key: str, default: bool) -> bool:
            return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

        config = cls(
            enabled=_bool_env("LOG_PII_SCRUBBING_ENABLED", True),
            scrub_phone_numbers=_bool_env("LOG_PII_SCRUB_PHONE_NUMBERS", True),
            scrub_tokens=_bool_env("LOG_PII_SCRUB_TOKENS", True),
            scrub_access_keys=_bool_env("LOG_PII_SCRUB_ACCESS_KEYS", True),
        )

        custom_patterns_json = os.getenv("LOG_PII_CUSTOM_PATTERNS")
        if custom_patterns_json:
            try:
                patterns = json.loads(custom_patterns_json)
                for item in patterns:
                    if isinstance(item, dict) and "pattern" in item:
                        config.custom_patterns.append(
                            (re.compile(item["pattern"]), item.get("replacement", "[REDACTED]"))
                        )
            except (json.JSONDecodeError, re.error) as e:
                logger.warning(f"Failed to parse LOG_PII_CUSTOM_PATTERNS: {e}")

        return config


class PIIScrubber:
    """Scrubs PII and secrets from strings and attribute dictionaries."""

    def __init__(self, config: PIIScrubberConfig | None = None):
        self.config = config or PIIScrubberConfig.from_env()
        self._active_patterns = self._build_active_patterns()

    def _build_active_patterns(self) -> list[tuple[Pattern[str], str]]:
        if not self.config.enabled:
            return []

        pattern_flags = {
            "phone_number": self.config.scrub_phone_numbers,
            "token": self.config.scrub_tokens,
            "access_key": self.config.scrub_access_keys,
        }
        patterns = [
            (pattern, replacement)
            for pattern, replacement, kind in _PII_PATTERNS
            if pattern_flags.get(kind, True)
        ]
        patterns.extend(self.config.custom_patterns)
        return patterns

    def scrub_string(self, value: str) -> str:
        """
        Scrub PII from a string value.

        Args:
            value: String potentially containing PII

        Returns:
            String with PII patterns replaced
        """
        if not self.config.enabled or not value:
            return value

        result = value
        for pattern, replacement in self._active_patterns:
            result = pattern.sub(replacement, result)
        return result

    def scrub_attribute_value(self, name: str, value: Any) -> Any:
        if not self.config.enabled:
            return value

        name_lower = name.lower()
        if any(redact_name in name_lower for redact_name in REDACT_ATTRIBUTE_NAMES):
            return "[REDACTED]"
        if isinstance(value, str):
            return self.scrub_string(value)
        return value

    def scrub_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        if not self.config.enabled:
            return data
        return {key: self.scrub_attribute_value(key, value) for key, value in data.items()}


_default_scrubber: PIIScrubber | None = None


def get_pii_scrubber() -> PIIScrubber:
    """Get the default scrubber instance (lazily initialized)."""
    global _default_scrubber
    if _default_scrubber is None:
        _default_scrubber = PIIScrubber()
    return _default_scrubber


def scrub_pii(value: str) -> str:
    """Convenience function to scrub PII from a string."""
    return get_pii_scrubber().scrub_string(value)
