"""Message cleaning for provider inline tokens (cheermotes and similar)."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

# Twitch cheermote prefixes; a prefix followed by digits is a cheer token, e.g. "Cheer100".
CHEERMOTE_PREFIXES: tuple[str, ...] = (
    "Cheer",
    "BibleThump",
    "cheerwhal",
    "Corgo",
    "uni",
    "ShowLove",
    "Party",
    "SeemsGood",
    "Pride",
    "Kappa",
    "FrankerZ",
    "HeyGuys",
    "DansGame",
    "EleGiggle",
    "TriHard",
    "Kreygasm",
    "4Head",
    "SwiftRage",
    "NotLikeThis",
    "FailFish",
    "VoHiYo",
    "PJSalt",
    "MrDestructoid",
    "bday",
    "RIPCheer",
    "Shamrock",
    "BitBoss",
    "Streamlabs",
    "Muxy",
    "HolidayCheer",
    "Goal",
    "Anon",
)

_SPACE_RE = re.compile(r"\s+")


@lru_cache(maxsize=16)
def _token_pattern(prefixes: tuple[str, ...]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(p) for p in prefixes)
    return re.compile(rf"\b(?:{alternation})\d+\b", re.IGNORECASE)


def collapse_whitespace(text: str) -> str:
    return _SPACE_RE.sub(" ", text or "").strip()


def strip_inline_tokens(message: str, prefixes: Iterable[str] = CHEERMOTE_PREFIXES) -> str:
    """Remove ``<prefix><digits>`` tokens and collapse whitespace.

    >>> strip_inline_tokens("Cheer100 hello   Kappa50 world")
    'hello world'
    """
    if not message:
        return ""
    prefix_tuple = tuple(prefixes)
    if prefix_tuple:
        message = _token_pattern(prefix_tuple).sub("", message)
    return collapse_whitespace(message)
