"""Small text helpers shared by the collector, comment generator and cards."""

import re


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def clip_text(text: str, max_chars: int) -> str:
    """Clip to ``max_chars`` characters, ending with an ellipsis when cut."""
    if len(text) <= max_chars:
        return text
    if max_chars <= 1:
        return text[:max_chars]
    return text[: max_chars - 1] + "…"


def contains_blocked_word(text: str, blocked_words: list[str]) -> str | None:
    """Return the first blocked word found in ``text``, or None."""
    normalized = normalize_whitespace(text).lower()
    for word in blocked_words:
        word = word.strip().lower()
        if word and word in normalized:
            return word
    return None


def safe_file_name(text: str) -> str:
    name = re.sub(r'[\\/:*?"<>|]', "-", normalize_whitespace(text))
    name = re.sub(r"\s+", "-", name.lower())[:40]
    return name or "card"
