#!/usr/bin/env python3
"""
One LIHKG log line -> filtered sentences.

Line format: tab-separated fields, field 2 (0-based) is the JSON body of a
reply-page API response:

  {"success": 1, "response": {"item_data": [{"msg": "<html>"}, ...]}}

For every `msg`: strip quoted replies, split the text on '\n', strip each
paragraph, run the validator and the script-ratio filter, keep survivors in
the order found.

Bad lines (too few fields, unparsable JSON) raise a RecordError; batch
processing counts and skips them. Responses with success != 1 or without an
item list simply produce nothing.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

from cjk_lexicon import tokenize
from forum_html_text import html_to_text
from paragraph_filter import DEFAULT_SETTINGS, FilterSettings, filter_paragraph, rejection_reason


LOGGER = logging.getLogger(__name__)

PAYLOAD_FIELD = 2


class ExtractionError(Exception):
    """Base class for everything the extractor raises on purpose."""


class RecordError(ExtractionError):
    kind = "record"

    def __init__(self, message: str, lineno: Optional[int] = None):
        super().__init__(message)
        self.lineno = lineno


class MalformedRecord(RecordError):
    kind = "malformed"


class InvalidJson(RecordError):
    kind = "invalid_json"


@dataclass
class ExtractionStats:
    entries: int = 0
    lines: int = 0
    malformed: int = 0
    invalid_json: int = 0
    inactive: int = 0
    messages: int = 0
    paragraphs: int = 0
    sentences: int = 0
    tokens: int = 0
    rejected: Counter = field(default_factory=Counter)

    @property
    def skipped(self) -> int:
        return self.malformed + self.invalid_json

    def merge(self, other: "ExtractionStats") -> "ExtractionStats":
        self.entries += other.entries
        self.lines += other.lines
        self.malformed += other.malformed
        self.invalid_json += other.invalid_json
        self.inactive += other.inactive
        self.messages += other.messages
        self.paragraphs += other.paragraphs
        self.sentences += other.sentences
        self.tokens += other.tokens
        self.rejected.update(other.rejected)
        return self


@dataclass
class BatchResult:
    text: str
    stats: ExtractionStats


def decode_line(raw: Union[bytes, str]) -> str:
    """UTF-8 with replacement characters; never fails."""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def parse_payload(line: str, lineno: Optional[int] = None) -> Any:
    line = line.rstrip("\r\n")
    fields = line.split("\t")
    if len(fields) <= PAYLOAD_FIELD:
        raise MalformedRecord(
            f"expected at least {PAYLOAD_FIELD + 1} tab-separated fields, got {len(fields)}", lineno
        )
    try:
        return json.loads(fields[PAYLOAD_FIELD])
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder can follow
        raise InvalidJson(f"payload is not valid JSON: {e}", lineno) from e


def iter_messages(payload: Any) -> List[str]:
    """
    `msg` strings of a successful response. Anything that does not have the
    expected shape yields an empty list.
    """
    if not isinstance(payload, dict):
        return []
    success = payload.get("success")
    # bool is an int subclass; `true` is not 1 here
    if type(success) is not int or success != 1:
        return []
    response = payload.get("response")
    if not isinstance(response, dict):
        return []
    items = response.get("item_data")
    if not isinstance(items, list):
        return []
    return [item["msg"] for item in items if isinstance(item, dict) and isinstance(item.get("msg"), str)]


def extract_sentences(
    msg: str,
    settings: FilterSettings = DEFAULT_SETTINGS,
    stats: Optional[ExtractionStats] = None,
    break_on_br: bool = False,
) -> List[str]:
    stats = stats if stats is not None else ExtractionStats()
    sentences = []
    text = html_to_text(msg, break_on_br=break_on_br)
    for para in text.split("\n"):
        para = para.strip()
        stats.paragraphs += 1

        reason = rejection_reason(para, settings)
        if reason is not None:
            stats.rejected[reason] += 1
            continue

        sentence = filter_paragraph(para, settings)
        if sentence is None:
            stats.rejected["script_ratio"] += 1
            continue

        sentences.append(sentence)
    return sentences


def process_line(
    line: str,
    settings: FilterSettings = DEFAULT_SETTINGS,
    stats: Optional[ExtractionStats] = None,
    lineno: Optional[int] = None,
    break_on_br: bool = False,
) -> List[str]:
    """
    Sentences of one raw line, in the order they appear.
    Raises MalformedRecord / InvalidJson for unusable lines.
    """
    stats = stats if stats is not None else ExtractionStats()
    payload = parse_payload(line, lineno)

    messages = iter_messages(payload)
    if not messages:
        stats.inactive += 1
        return []

    sentences = []
    for msg in messages:
        stats.messages += 1
        sentences.extend(extract_sentences(msg, settings, stats, break_on_br))
    return sentences


def process_batch(
    lines: Sequence[Union[bytes, str]],
    settings: FilterSettings = DEFAULT_SETTINGS,
    source: str = "",
    first_lineno: int = 1,
    break_on_br: bool = False,
) -> BatchResult:
    """
    Process a run of consecutive lines into one newline-terminated chunk.
    Per-line errors are logged, counted and skipped.
    """
    stats = ExtractionStats()
    parts = []
    for lineno, raw in enumerate(lines, first_lineno):
        stats.lines += 1
        try:
            sentences = process_line(decode_line(raw), settings, stats, lineno, break_on_br)
        except MalformedRecord as e:
            stats.malformed += 1
            LOGGER.debug("Skipping %s line %d (%s): %s", source or "<input>", lineno, e.kind, e)
            continue
        except InvalidJson as e:
            stats.invalid_json += 1
            LOGGER.debug("Skipping %s line %d (%s): %s", source or "<input>", lineno, e.kind, e)
            continue

        for sentence in sentences:
            parts.append(sentence + "\n")
            stats.sentences += 1
            stats.tokens += len(tokenize(sentence))

    return BatchResult("".join(parts), stats)
