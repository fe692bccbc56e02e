#!/usr/bin/env python3
"""
Paragraph-level filters for the LIHKG sentence corpus.

Validator (rules run in order, the first failing rule rejects):
  1. empty
  2. deleted-reply placeholder ("此回覆已被刪除")
  3. cross-post boilerplate ("分享自 LIHKG 討論區")
  4. length outside [min_chars, max_chars] (characters, not bytes)
  5. contains http:// or https://
  6. only English letters and spaces
  7. date: 4 digits, any char, 2 digits, any char, 2 digits
  8. time: HH:MM:SS
  9. too repetitive: distinct chars * 5 < length

Script-ratio filter (applied to accepted paragraphs):
  - keep only if cjk >= min_cjk and cjk > round(length * cjk_ratio)
  - then drop every character that is not CJK, listed punctuation or ASCII
    alphanumeric. Length is not re-checked afterwards.
"""

import math
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from cjk_lexicon import count_cjk, is_ascii_alnum, is_cjk, is_punctuation


DELETED_PLACEHOLDER = "此回覆已被刪除"
SHARE_MARKER = "分享自 LIHKG 討論區"

MIN_CHARS = 5
MAX_CHARS = 20
MIN_CJK = 5
CJK_RATIO = 0.8
REPEAT_FACTOR = 5

URL_PREFIXES = ("http://", "https://")

ENGLISH_ONLY_RE = re.compile(r"^[A-Za-z ]+$")
DATE_RE = re.compile(r"^\d{4}.\d{2}.\d{2}$")
TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}$")


@dataclass(frozen=True)
class FilterSettings:
    min_chars: int = MIN_CHARS
    max_chars: int = MAX_CHARS
    min_cjk: int = MIN_CJK
    cjk_ratio: float = CJK_RATIO

    def __post_init__(self):
        if self.min_chars < 0 or self.max_chars < self.min_chars:
            raise ValueError(f"Bad length range: [{self.min_chars}, {self.max_chars}]")
        if not 0.0 <= self.cjk_ratio <= 1.0:
            raise ValueError(f"cjk_ratio must be within [0, 1], got {self.cjk_ratio}")
        if self.min_cjk < 0:
            raise ValueError(f"min_cjk must be >= 0, got {self.min_cjk}")


DEFAULT_SETTINGS = FilterSettings()

Rule = Tuple[str, Callable[[str, FilterSettings], bool]]


def is_too_repetitive(para: str) -> bool:
    return len(set(para)) * REPEAT_FACTOR < len(para)


# Each predicate returns True when the paragraph must be rejected.
RULES: Tuple[Rule, ...] = (
    ("empty", lambda p, s: not p),
    ("deleted", lambda p, s: p == DELETED_PLACEHOLDER),
    ("shared", lambda p, s: SHARE_MARKER in p),
    ("length", lambda p, s: not s.min_chars <= len(p) <= s.max_chars),
    ("url", lambda p, s: any(prefix in p for prefix in URL_PREFIXES)),
    ("english_only", lambda p, s: ENGLISH_ONLY_RE.fullmatch(p) is not None),
    ("date", lambda p, s: DATE_RE.fullmatch(p) is not None),
    ("time", lambda p, s: TIME_RE.fullmatch(p) is not None),
    ("repetitive", lambda p, s: is_too_repetitive(p)),
)


def rejection_reason(
    para: str,
    settings: FilterSettings = DEFAULT_SETTINGS,
    rules: Sequence[Rule] = RULES,
) -> Optional[str]:
    """Name of the first rule rejecting `para`, or None if every rule passes."""
    for name, rejects in rules:
        if rejects(para, settings):
            return name
    return None


def is_valid_paragraph(
    para: str,
    settings: FilterSettings = DEFAULT_SETTINGS,
    rules: Sequence[Rule] = RULES,
) -> bool:
    return rejection_reason(para, settings, rules) is None


def round_half_up(x: float) -> int:
    # Inputs are non-negative; length * 0.8 never lands on .5 for integer lengths
    return int(math.floor(x + 0.5))


def is_mostly_cjk(para: str, settings: FilterSettings = DEFAULT_SETTINGS) -> bool:
    num_cjk = count_cjk(para)
    return num_cjk >= settings.min_cjk and num_cjk > round_half_up(len(para) * settings.cjk_ratio)


def keep_allowed_chars(text: str) -> str:
    return "".join(ch for ch in text if is_cjk(ch) or is_punctuation(ch) or is_ascii_alnum(ch))


def filter_paragraph(para: str, settings: FilterSettings = DEFAULT_SETTINGS) -> Optional[str]:
    """
    Script-ratio filter. Returns the cleaned paragraph, or None if it is not
    predominantly Chinese.
    """
    if not is_mostly_cjk(para, settings):
        return None
    return keep_allowed_chars(para)
