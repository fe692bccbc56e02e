#!/usr/bin/env python3
"""
Character classes shared by the LIHKG sentence filters.

- CJK test uses the Unicode Unified_Ideograph property (via the `regex` module),
  not a hand-picked code-point range.
- Punctuation is the union of three fixed sets: shared symbols, Latin
  punctuation and CJK (full-width) punctuation.
- Tokenizer splits text into alphanumeric runs, single ideographs and
  punctuation runs.

Requires:
  pip install regex
"""

from typing import List

import regex


CJK_RE = regex.compile(r"\p{Unified_Ideograph}")

# ASCII alphanumeric run, one ideograph, or a punctuation run
WORD_RE = regex.compile(r"[A-Za-z0-9]+|\p{Unified_Ideograph}|\p{Punct}+")

SHARED_PUNCS = frozenset("@#$%^&*·…‥—～")
ENGLISH_PUNCS = frozenset("~`!()-_{}[]|\\:;\"'<>,.?/")
CHINESE_PUNCS = frozenset("！：；“”‘’【】（）「」﹁﹂『』《》？，。、／＋〈〉︿﹀［］‧")

PUNCS = SHARED_PUNCS | ENGLISH_PUNCS | CHINESE_PUNCS


def is_cjk(ch: str) -> bool:
    return CJK_RE.fullmatch(ch) is not None


def is_punctuation(ch: str) -> bool:
    return ch in PUNCS


def is_ascii_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def count_cjk(text: str) -> int:
    return len(CJK_RE.findall(text))


def tokenize(text: str) -> List[str]:
    """
    Split into alphanumeric runs, single ideographs and punctuation runs.
    Whitespace and symbols outside those classes are skipped.
    """
    return WORD_RE.findall(text)
