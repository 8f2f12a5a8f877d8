#!/usr/bin/env python3
"""
validators.py
--------------------
Normalization of values read from tenant rows and from the config file.

Tenant databases are loosely typed (dates as strings, ids as strings,
MySQL zero dates), so everything crossing into the mirror passes through
one of these converters first.
"""
from __future__ import annotations

import codecs
import re
import unicodedata
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from .exceptions import ValidationError


TRUE_STRINGS = frozenset({"true", "1", "yes", "on", "enabled"})
FALSE_STRINGS = frozenset({"false", "0", "no", "off", "disabled"})


class DataValidator:
    """Static converters for tenant rows, tag slugs and config values."""

    @staticmethod
    def validate_required_fields(
        data: Dict[str, Any], required_fields: List[str]
    ) -> None:
        """
        Reject a row lacking any of ``required_fields``.

        Raises:
            ValidationError: Naming every missing field
        """
        missing = [f for f in required_fields if data.get(f) is None]
        if missing:
            raise ValidationError(f"Row is missing required field(s): {', '.join(missing)}")

    @staticmethod
    def normalize_string(value: Any) -> Optional[str]:
        """Collapse whitespace runs and strip; empty text becomes None."""
        if value is None:
            return None
        return " ".join(str(value).split()) or None

    @staticmethod
    def normalize_slug(text: Any, max_length: int = 200) -> str:
        """
        Convert a tenant tag slug (or a tag name lacking one) to its sitewide form.

        Tags from different tenants are deduplicated by this slug. Only
        case and whitespace are normalized; every other character is kept,
        percent-encoded outside the URL-unreserved set the way WordPress
        stores non-Latin slugs. Existing ``%XX`` escapes pass through, so
        a tenant's stored slug and its decoded name agree.

        Args:
            text: Tenant slug or tag name
            max_length: Maximum slug length (default 200)

        Returns:
            Lowercase slug of unreserved characters and ``%xx`` escapes

        Examples:
            >>> DataValidator.normalize_slug("  Web   Dev ")
            'web-dev'
            >>> DataValidator.normalize_slug("C#")
            'c%23'
            >>> DataValidator.normalize_slug("日本")
            '%e6%97%a5%e6%9c%ac'
        """
        if not text:
            return ""

        text = unicodedata.normalize("NFC", str(text)).strip().lower()
        text = re.sub(r"\s+", "-", text)
        text = re.sub(r"%(?![0-9a-f]{2})", "%25", text)
        text = quote(text, safe="-%").lower()
        text = re.sub(r"-+", "-", text).strip("-")

        if len(text) > max_length:
            text = DataValidator._truncate_encoded(text, max_length).rstrip("-")
        return text

    @staticmethod
    def _truncate_encoded(text: str, max_length: int) -> str:
        """Cut a percent-encoded slug without splitting an escape or a UTF-8 character."""
        text = re.sub(r"%[0-9a-f]?$", "", text[:max_length])
        escapes = re.search(r"(?:%[0-9a-f]{2})+$", text)
        if escapes is None:
            return text

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        decoder.decode(bytes.fromhex(escapes.group().replace("%", "")))
        dangling = len(decoder.getstate()[0])
        return text[: len(text) - 3 * dangling] if dangling else text

    @staticmethod
    def normalize_slugs(values: Iterable[Any]) -> frozenset:
        """
        Normalize every slug, dropping ones that normalize to nothing.

        Args:
            values: Raw tag slugs

        Returns:
            Frozen set of non-empty slugs
        """
        slugs = (DataValidator.normalize_slug(v) for v in values if v)
        return frozenset(s for s in slugs if s)

    @staticmethod
    def normalize_bool(value: Any) -> Optional[bool]:
        """
        Read a flag such as ``aggregation_enabled``.

        Accepts booleans, 0/1 and the usual yes/no, on/off words.

        Raises:
            ValidationError: For any other number or word
        """
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            word = value.strip().lower()
            if word in TRUE_STRINGS:
                return True
            if word in FALSE_STRINGS:
                return False
        raise ValidationError(f"Not a boolean: {value!r}")

    @staticmethod
    def normalize_int(value: Any) -> Optional[int]:
        """Integer value of ``value``, or None if it is not one (booleans included)."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def normalize_datetime(value: Any) -> Optional[datetime]:
        """
        Normalize datetime inputs.

        Accepts datetime objects, dates (midnight) and ISO 8601 strings.
        MySQL zero dates ("0000-00-00 00:00:00") become None.

        Args:
            value: Datetime, date or string

        Returns:
            Naive or aware datetime as given, or None
        """
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            value = value.strip()
            if not value or value.startswith("0000-00-00"):
                return None
            try:
                return datetime.fromisoformat(value)
            except ValueError as e:
                raise ValidationError(f"Invalid datetime: {value}") from e
        return None
