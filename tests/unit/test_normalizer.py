"""
tests/unit/test_normalizer.py

Unit tests for docchat.ingestion.normalizer.normalize().

normalize() is a pure function (no IO), so every test is synchronous.

Coverage
--------
  - Unicode NFKC normalization (ligatures, full-width characters)
  - Null bytes and non-printable control characters stripped
  - CRLF and bare-CR converted to LF
  - Words hyphenated across a line break re-joined
  - Intra-line whitespace (including NBSP) collapsed, lines stripped
  - Runs of 3+ newlines collapsed to one blank line
  - Empty / whitespace-only input returns empty string
"""
from __future__ import annotations

from docchat.ingestion.normalizer import normalize


class TestNormalizeBasic:
    def test_plain_text_unchanged(self) -> None:
        assert normalize("Hello world.") == "Hello world."

    def test_empty_string_returns_empty(self) -> None:
        assert normalize("") == ""

    def test_whitespace_only_returns_empty(self) -> None:
        assert normalize("   \n\t\n   ") == ""


class TestNormalizeUnicode:
    def test_ligature_folded(self) -> None:
        assert normalize("ﬁnancial") == "financial"

    def test_full_width_digits_folded(self) -> None:
        assert normalize("２０２４") == "2024"


class TestNormalizeCharacters:
    def test_null_bytes_removed(self) -> None:
        assert normalize("hello\x00world") == "helloworld"

    def test_control_characters_removed_tabs_kept_as_space(self) -> None:
        assert normalize("a\x07b\tc") == "ab c"

    def test_crlf_and_cr_unified(self) -> None:
        assert normalize("a\r\nb\rc\nd") == "a\nb\nc\nd"


class TestNormalizeLayout:
    def test_hyphenated_line_break_rejoined(self) -> None:
        assert normalize("infor-\nmation retrieval") == "information retrieval"

    def test_hyphen_without_break_kept(self) -> None:
        assert normalize("well-known") == "well-known"

    def test_inline_whitespace_and_nbsp_collapsed(self) -> None:
        assert normalize("a    b\t\tc") == "a b c"

    def test_lines_stripped(self) -> None:
        assert normalize("  first  \n   second ") == "first\nsecond"

    def test_blank_line_runs_collapsed(self) -> None:
        assert normalize("a\n\n\n\n\nb") == "a\n\nb"

    def test_single_blank_line_kept(self) -> None:
        assert normalize("a\n\nb") == "a\n\nb"
