"""Ingestion filter: turns raw provider events into queue candidates."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from shared.models.alert import AlertCandidate, AlertCategory
from shared.text import CHEERMOTE_PREFIXES, collapse_whitespace, strip_inline_tokens

LOGGER = logging.getLogger("Ingestion")


class IngestionFilter:
    """Validates and cleans raw alert events.

    Malformed events are dropped with a warning. Bits events below
    ``min_bits`` are dropped quietly. Duplicate suppression is not done here:
    the queue store applies its dedup window on append.
    """

    def __init__(
        self,
        *,
        min_bits: int = 200,
        emote_prefixes: Iterable[str] = CHEERMOTE_PREFIXES,
    ) -> None:
        self.min_bits = min_bits
        self.emote_prefixes = tuple(emote_prefixes)
        self.dropped = 0

    def accept(
        self, event: Mapping[str, Any], *, enforce_minimum: bool = True
    ) -> AlertCandidate | None:
        """Build a candidate from ``{username, amount, message, category}``, or None.

        ``enforce_minimum=False`` skips the bits threshold (manual test alerts).
        """
        username = str(event.get("username") or "").strip()
        if not username:
            return self._drop("missing username", event)

        try:
            amount = float(event.get("amount", 0))
        except (TypeError, ValueError):
            return self._drop("non-numeric amount", event)
        if not math.isfinite(amount) or amount < 0:
            return self._drop("invalid amount", event)

        try:
            category = AlertCategory(event.get("category") or AlertCategory.OTHER.value)
        except ValueError:
            return self._drop(f"unknown category {event.get('category')!r}", event)

        message = str(event.get("message") or "")
        if category is AlertCategory.BITS:
            if enforce_minimum and amount < self.min_bits:
                LOGGER.debug(f"Ignoring {amount:g} bits from {username} (< {self.min_bits})")
                return None
            message = strip_inline_tokens(message, self.emote_prefixes)
        else:
            message = collapse_whitespace(message)

        return AlertCandidate(
            source_username=username,
            amount=amount,
            message=message,
            category=category,
        )

    def _drop(self, reason: str, event: Mapping[str, Any]) -> None:
        self.dropped += 1
        LOGGER.warning(f"Dropping malformed alert event ({reason}): {dict(event)!r}")
        return None
