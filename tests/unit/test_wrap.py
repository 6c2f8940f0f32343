"""Tests for escape-aware line wrapping."""

from __future__ import annotations

import pytest

from opencode_mt.cli.ansi import RED, RESET, visible_width
from opencode_mt.cli.wrap import wrap_text


class TestWrapText:
    def test_basic(self) -> None:
        assert wrap_text("hello world this is a long text", 10) == ["hello", "world this", "is a long", "text"]

    def test_exact_width(self) -> None:
        assert wrap_text("1234567890", 10) == ["1234567890"]

    def test_hard_split(self) -> None:
        assert wrap_text("12345678901", 10) == ["1234567890", "1"]

    def test_long_word_after_text_starts_new_line(self) -> None:
        assert wrap_text("ab 123456789012", 10) == ["ab", "1234567890", "12"]

    def test_tail_of_split_word_keeps_packing(self) -> None:
        assert wrap_text("123456789012 ab", 10) == ["1234567890", "12 ab"]

    def test_empty_input(self) -> None:
        assert wrap_text("", 10) == [""]

    def test_blank_line_between_paragraphs(self) -> None:
        assert wrap_text("a\n\nb", 10) == ["a", "", "b"]

    def test_trailing_newline_adds_no_line(self) -> None:
        assert wrap_text("a\n", 10) == ["a"]

    def test_double_trailing_newline_keeps_one_blank(self) -> None:
        assert wrap_text("a\n\n", 10) == ["a", ""]

    def test_carriage_returns_removed(self) -> None:
        assert wrap_text("ab\r\ncd", 10) == ["ab", "cd"]

    def test_tabs_separate_words(self) -> None:
        assert wrap_text("a\tb", 10) == ["a b"]

    def test_leading_indentation_dropped(self) -> None:
        assert wrap_text("   indented", 20) == ["indented"]

    def test_invalid_width(self) -> None:
        with pytest.raises(ValueError):
            wrap_text("abc", 0)


class TestWrapWithEscapes:
    def test_escapes_do_not_count_toward_width(self) -> None:
        text = f"{RED}hello{RESET} world"
        assert wrap_text(text, 11) == [text]

    def test_color_pair_stays_with_its_word(self) -> None:
        lines = wrap_text(f"aaaa {RED}bbbb{RESET} cccc", 9)
        assert lines == [f"aaaa {RED}bbbb{RESET}", "cccc"]

    def test_every_line_fits(self) -> None:
        text = " ".join(f"{RED}word{i}{RESET}" for i in range(30))
        for line in wrap_text(text, 17):
            assert visible_width(line) <= 17

    def test_escape_only_word_attaches_without_space(self) -> None:
        assert wrap_text(f"ab {RESET} cd", 10) == [f"ab{RESET} cd"]

    def test_hard_split_keeps_escape_intact(self) -> None:
        lines = wrap_text(f"{RED}123456789012{RESET}", 10)
        assert lines == [f"{RED}1234567890", f"12{RESET}"]
