import re
import unicodedata

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HYPHENATED_BREAK = re.compile(r"(\w)-\n(\w)")
_INLINE_WHITESPACE = re.compile(r"[ \t\u00a0]+")
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize(text: str) -> str:
    """Clean the text of one extracted page before it is chunked and indexed.

    Steps applied in order:
    1. Unicode NFKC normalization (folds ligatures such as "ﬁ" emitted by PDFs)
    2. Remove null bytes and non-printable control characters
    3. Normalize line endings to '\\n'
    4. Re-join words hyphenated across a line break
    5. Collapse intra-line whitespace (including NBSP) and strip each line
    6. Collapse runs of blank lines to a single blank line

    Args:
        text: Raw page text as returned by the file connector.

    Returns:
        Cleaned text; empty when the page carried no visible text.
    """
    text = unicodedata.normalize("NFKC", text)
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HYPHENATED_BREAK.sub(r"\1\2", text)

    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.split("\n")]

    text = "\n".join(lines)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()
