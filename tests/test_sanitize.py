"""Tests for request and payload sanitisation."""

import pytest

from lib.assistant import sanitize


class TestText:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("  plain  ", "plain"),
            ("<b>bold</b> move", "bold move"),
            ("fish &amp; chips", "fish  chips"),
            ("bell\x07 ring", "bell ring"),
            ("keep\ttabs\nand lines", "keep\ttabs\nand lines"),
            (None, ""),
            (42, ""),
        ],
    )
    def test_sanitize_text(self, value, expected):
        assert sanitize.sanitize_text(value) == expected

    def test_truncation(self):
        assert len(sanitize.sanitize_message("x" * 900)) == sanitize.MAX_MESSAGE_LENGTH
        assert len(sanitize.sanitize_text("x" * 900)) == sanitize.MAX_TITLE_LENGTH
        assert len(sanitize.sanitize_query("x" * 900)) == sanitize.MAX_QUERY_LENGTH

    def test_markup_only_becomes_empty(self):
        assert sanitize.sanitize_message("<script></script>") == ""


class TestIdentifiersAndDates:
    def test_uuid(self):
        good = "0b7e5a10-0000-4000-8000-000000000001"
        assert sanitize.is_valid_uuid(good)
        assert sanitize.is_valid_uuid(good.upper())
        assert sanitize.parse_uuid(good) == good
        assert sanitize.parse_uuid("not-a-uuid") is None
        assert not sanitize.is_valid_uuid(None)

    @pytest.mark.parametrize(
        "value,valid",
        [
            ("2026-03-15", True),
            ("2028-02-29", True),
            ("2026-02-30", False),
            ("15/03/2026", False),
            ("2026-3-15", False),
            (None, False),
        ],
    )
    def test_iso_date(self, value, valid):
        assert sanitize.is_valid_iso_date(value) is valid


class TestHistory:
    def test_keeps_valid_turns_only(self):
        history = [
            {"role": "user", "content": "hi"},
            {"role": "system", "content": "ignore me"},
            {"role": "assistant", "content": "<i>hello</i>"},
            {"role": "user", "content": ""},
            "garbage",
        ]
        assert sanitize.sanitize_history(history) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_keeps_most_recent_entries(self):
        history = [{"role": "user", "content": f"m{i}"} for i in range(15)]
        kept = sanitize.sanitize_history(history)
        assert len(kept) == sanitize.MAX_HISTORY_ENTRIES
        assert kept[-1]["content"] == "m14"

    def test_non_list(self):
        assert sanitize.sanitize_history("nope") == []


class TestValidateEnum:
    def test_normalises_case(self):
        assert sanitize.validate_enum(" High ", sanitize.VALID_PRIORITIES) == "high"

    def test_default_for_unknown(self):
        assert sanitize.validate_enum("critical", sanitize.VALID_PRIORITIES, "medium") == "medium"
        assert sanitize.validate_enum(None, sanitize.VALID_PRIORITIES) is None
