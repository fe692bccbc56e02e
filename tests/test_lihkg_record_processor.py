import json

import pytest

from conftest import make_line, reply_line
from lihkg_record_processor import (
    ExtractionStats,
    InvalidJson,
    MalformedRecord,
    iter_messages,
    parse_payload,
    process_batch,
    process_line,
)


EXAMPLE_PAYLOAD = (
    '{"success":1,"response":{"item_data":[{"msg":"<p>這是一個測試訊息！</p>'
    '<blockquote>隱藏內容</blockquote>"}]}}'
)


def test_example_reply_yields_one_sentence():
    line = "dummy1\tdummy2\t" + EXAMPLE_PAYLOAD
    assert process_line(line) == ["這是一個測試訊息！"]

    result = process_batch([line])
    assert result.text == "這是一個測試訊息！\n"
    assert "隱藏內容" not in result.text
    assert result.stats.sentences == 1


def test_unsuccessful_response_yields_nothing():
    stats = ExtractionStats()
    line = reply_line("<p>這是一個測試訊息！</p>", success=0)
    assert process_line(line, stats=stats) == []
    assert stats.inactive == 1
    assert stats.messages == 0


@pytest.mark.parametrize(
    "payload",
    [
        {"response": {"item_data": [{"msg": "這是一個測試訊息！"}]}},
        {"success": True, "response": {"item_data": [{"msg": "這是一個測試訊息！"}]}},
        {"success": "1", "response": {"item_data": [{"msg": "這是一個測試訊息！"}]}},
        {"success": 1},
        {"success": 1, "response": None},
        {"success": 1, "response": {"item_data": {"msg": "這是一個測試訊息！"}}},
        {"success": 1, "response": {"item_data": ["這是一個測試訊息！", None]}},
        {"success": 1, "response": {"item_data": [{"msg": 12345}, {"title": "這是一個測試訊息！"}]}},
        [1, 2, 3],
        '"just a string"',
        None,
    ],
)
def test_unexpected_shapes_are_not_errors(payload):
    assert process_line(make_line(payload)) == []


def test_iter_messages_keeps_order():
    payload = {"success": 1, "response": {"item_data": [{"msg": "一"}, {"other": 1}, {"msg": "二"}]}}
    assert iter_messages(payload) == ["一", "二"]


def test_sentences_keep_discovery_order():
    line = reply_line(
        "第一句說話內容\n<b>第二句說話內容</b>",
        "第三句說話內容<blockquote>第零句說話內容</blockquote>",
    )
    assert process_line(line) == ["第一句說話內容", "第二句說話內容", "第三句說話內容"]


def test_paragraphs_are_stripped_before_filtering():
    line = reply_line("   今日天氣真係幾好   \n\n\t")
    assert process_line(line) == ["今日天氣真係幾好"]


def test_rejections_are_counted_by_rule():
    stats = ExtractionStats()
    line = reply_line("此回覆已被刪除\n2024-01-15\n今日天氣好a\n今日天氣真係幾好")
    assert process_line(line, stats=stats) == ["今日天氣真係幾好"]
    assert stats.rejected["deleted"] == 1
    assert stats.rejected["date"] == 1
    assert stats.rejected["script_ratio"] == 1
    assert stats.paragraphs == 4


def test_too_few_fields():
    with pytest.raises(MalformedRecord) as excinfo:
        parse_payload("only\tone tab", lineno=7)
    assert excinfo.value.lineno == 7


def test_payload_not_json():
    with pytest.raises(InvalidJson):
        process_line("a\tb\t{not json")


def test_only_field_two_is_parsed():
    payload = json.dumps({"success": 1, "response": {"item_data": [{"msg": "今日天氣真係幾好"}]}}, ensure_ascii=False)
    line = f"a\tb\t{payload}\textra\tfields\r\n"
    assert process_line(line) == ["今日天氣真係幾好"]


def test_batch_skips_bad_lines_and_counts_them():
    lines = [
        reply_line("今日天氣真係幾好").encode("utf-8"),
        b"no tabs at all",
        b"a\tb\t{broken",
        reply_line("第二句說話內容", success=0).encode("utf-8"),
        reply_line("這是一個測試訊息！"),
    ]
    result = process_batch(lines, source="part-0001.csv", first_lineno=11)
    assert result.text == "今日天氣真係幾好\n這是一個測試訊息！\n"
    assert result.stats.lines == 5
    assert result.stats.malformed == 1
    assert result.stats.invalid_json == 1
    assert result.stats.skipped == 2
    assert result.stats.inactive == 1
    assert result.stats.sentences == 2
    # 8 + 8 ideographs and one punctuation run
    assert result.stats.tokens == 17


def test_invalid_utf8_outside_payload_is_tolerated():
    line = b"\xff\xfe\tb\t" + json.dumps(
        {"success": 1, "response": {"item_data": [{"msg": "今日天氣真係幾好"}]}}
    ).encode("ascii")
    result = process_batch([line])
    assert result.text == "今日天氣真係幾好\n"


def test_stats_merge():
    a = ExtractionStats(lines=2, malformed=1, sentences=3)
    a.rejected["url"] += 2
    b = ExtractionStats(lines=5, invalid_json=2, sentences=1, entries=1)
    b.rejected["url"] += 1
    b.rejected["length"] += 4
    a.merge(b)
    assert (a.lines, a.malformed, a.invalid_json, a.sentences, a.entries) == (7, 1, 2, 4, 1)
    assert a.rejected == {"url": 3, "length": 4}


def test_cut_off_emoji_escape_is_tolerated():
    # "\ud83d" without its low half, as left by a truncated emoji
    payload = '{"success":1,"response":{"item_data":[{"msg":"\\ud83d今日天氣真係幾好"}]}}'
    line = "a\tb\t" + payload
    assert process_line(line) == ["今日天氣真係幾好"]

    result = process_batch([line.encode("utf-8"), reply_line("這是一個測試訊息！")])
    assert result.text == "今日天氣真係幾好\n這是一個測試訊息！\n"


def test_deeply_nested_payload_counts_as_invalid_json():
    nested = "a\tb\t" + "[" * 200000 + "]" * 200000
    with pytest.raises(InvalidJson):
        parse_payload(nested)

    result = process_batch([nested, reply_line("今日天氣真係幾好")])
    assert result.stats.invalid_json == 1
    assert result.text == "今日天氣真係幾好\n"
