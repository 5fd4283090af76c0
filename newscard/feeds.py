"""
RSS ingestion for newscard.

Feeds are fetched concurrently, each under its own timeout; a failing
feed is logged and contributes nothing. Completion order does not matter:
articles are sorted by recency (then link) before the per-category cap
and the overall cap are applied, so the selection is reproducible.
"""

import asyncio
import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

import feedparser
import httpx
import yaml
from rich.console import Console

from newscard.errors import ConfigurationError
from newscard.ledger import url_hash
from newscard.text import normalize_whitespace

console = Console()

USER_AGENT = "newscard/1.0 (+https://github.com/newscard/newscard)"
TITLE_MAX_CHARS = 160


@dataclass
class FeedSource:
    title: str
    url: str
    category: str = "general"
    language: str | None = None


@dataclass
class Article:
    id: str                     # url hash
    title: str
    link: str
    feed_title: str
    category: str
    published: str | None = None  # ISO datetime, UTC
    snippet: str = ""

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.published or "", self.link)


def load_feed_sources(path: Path) -> list[FeedSource]:
    """Read feeds.yaml: a list of ``{title, url, category}`` mappings."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or []
    except FileNotFoundError as e:
        raise ConfigurationError(f"{path.name} (feed list)") from e

    if isinstance(data, dict):
        data = data.get("feeds", [])
    sources = []
    for raw in data:
        if not isinstance(raw, dict) or not raw.get("url") or not raw.get("title"):
            console.print(f"[yellow]Ignoring malformed feed entry: {raw!r}[/yellow]")
            continue
        sources.append(FeedSource(
            title=raw["title"],
            url=raw["url"],
            category=raw.get("category") or "general",
            language=raw.get("language"),
        ))
    return sources


def _entry_published(entry) -> str | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc).isoformat()


def parse_feed(content: bytes, source: FeedSource) -> list[Article]:
    """Turn raw feed bytes into articles."""
    parsed = feedparser.parse(content)
    articles = []
    for entry in parsed.entries:
        link = (entry.get("link") or entry.get("id") or "").strip()
        title = normalize_whitespace(entry.get("title") or "")
        if not link or not title:
            continue
        articles.append(Article(
            id=url_hash(link),
            title=title[:TITLE_MAX_CHARS],
            link=link,
            feed_title=source.title,
            category=source.category,
            published=_entry_published(entry),
            snippet=normalize_whitespace(entry.get("summary") or ""),
        ))
    return articles


async def _fetch_one(client: httpx.AsyncClient, source: FeedSource, timeout: float) -> list[Article]:
    response = await asyncio.wait_for(client.get(source.url), timeout=timeout)
    response.raise_for_status()
    return parse_feed(response.content, source)


async def fetch_all(sources: list[FeedSource], timeout: float = 15) -> list[Article]:
    """Fetch every feed concurrently. Failed feeds are logged and skipped."""
    headers = {"User-Agent": USER_AGENT}
    async with httpx.AsyncClient(headers=headers, timeout=timeout, follow_redirects=True) as client:
        results = await asyncio.gather(
            *(_fetch_one(client, s, timeout) for s in sources),
            return_exceptions=True,
        )

    articles: list[Article] = []
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            console.print(f"[yellow]Feed failed: {source.title} ({source.url}): {result!r}[/yellow]")
            continue
        console.print(f"[dim]{source.title}: {len(result)} items[/dim]")
        articles.extend(result)
    return articles


def _domain_blocked(url: str, blocked: list[str]) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return any(host == d or host.endswith(f".{d}") for d in (b.lower().lstrip(".") for b in blocked))


def select_articles(articles: list[Article], config: dict, posted_hashes=frozenset()) -> list[Article]:
    """Drop duplicates, blocked domains and published URLs; sort; apply caps."""
    block_domains = config.get("filters", {}).get("block_domains", [])
    max_per_category = int(config.get("max_per_category", 2))
    max_candidates = int(config.get("max_candidates", 5))

    seen: set[str] = set()
    eligible = []
    for article in articles:
        if article.id in seen or article.id in posted_hashes:
            continue
        if _domain_blocked(article.link, block_domains):
            continue
        seen.add(article.id)
        eligible.append(article)

    eligible.sort(key=lambda a: a.sort_key, reverse=True)

    per_category: dict[str, int] = {}
    selected = []
    for article in eligible:
        count = per_category.get(article.category, 0)
        if count >= max_per_category:
            continue
        per_category[article.category] = count + 1
        selected.append(article)
        if len(selected) >= max_candidates:
            break
    return selected


def fetch_latest_articles(sources: list[FeedSource], config: dict, posted_hashes=frozenset()) -> list[Article]:
    timeout = float(config.get("http", {}).get("feed_timeout_seconds", 15))
    articles = asyncio.run(fetch_all(sources, timeout=timeout))
    return select_articles(articles, config, posted_hashes)
