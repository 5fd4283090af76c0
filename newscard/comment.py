"""
Comment generation via the Claude API.

One short, punchy line per article, written to be set large on the card.
The result is clipped to ``comment.max_chars`` and rejected when it is
empty or contains a blocked word.
"""

import anthropic

from newscard.errors import ConfigurationError, TransientIOError
from newscard.feeds import Article
from newscard.text import clip_text, contains_blocked_word, normalize_whitespace

SNIPPET_MAX_CHARS = 400

PROMPT = """You write the headline text stamped on a news thumbnail card.
Read the article below and coin one short, sharp phrase that sums it up from a
wry, slightly sardonic distance. It must make sense on its own when seen only
on the card. Write in the article's language. No hashtags, no emoji, no quotes.
At most {max_chars} characters. Return ONLY the phrase.

PUBLISHER: {publisher}
TITLE: {title}
{extra}"""


class CommentRejected(Exception):
    """The generated comment was empty or hit the block list."""


class CommentWriter:
    """Holds one API client for the whole collect run."""

    def __init__(self, ctx):
        api_key = ctx.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY")
        self.client = anthropic.Anthropic(api_key=api_key, timeout=ctx.timeout * 3)
        comment_config = ctx.config.get("comment", {})
        self.model = comment_config.get("model", "claude-sonnet-4-20250514")
        self.max_chars = int(comment_config.get("max_chars", 38))
        self.block_words = ctx.config.get("filters", {}).get("block_words", [])

    def build_prompt(self, article: Article, og_title: str | None = None) -> str:
        extra = []
        if og_title and og_title != article.title:
            extra.append(f"OG TITLE: {og_title}")
        if article.snippet:
            extra.append(f"SUMMARY: {article.snippet[:SNIPPET_MAX_CHARS]}")
        return PROMPT.format(
            max_chars=self.max_chars,
            publisher=article.feed_title,
            title=article.title,
            extra="\n".join(extra),
        )

    def write(self, article: Article, og_title: str | None = None) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=120,
                temperature=0.6,
                messages=[{"role": "user", "content": self.build_prompt(article, og_title)}],
            )
        except anthropic.APIError as e:
            raise TransientIOError(f"Comment generation failed for {article.link}: {e}") from e
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        comment = clip_text(normalize_whitespace(text).strip('"“”'), self.max_chars)
        if not comment:
            raise CommentRejected(f"Empty comment for {article.link}")
        blocked = contains_blocked_word(comment, self.block_words)
        if blocked:
            raise CommentRejected(f"Comment contains blocked word '{blocked}': {comment}")
        return comment
