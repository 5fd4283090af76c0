"""
Collect run: feeds -> OG -> comment -> card -> batch -> store.

Articles that fail (comment rejected, image unreadable, network error) are
dropped before ids are assigned, so the batch ids stay 1..n. Dropped
articles are reported in ``CollectResult.failures``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from rich.console import Console

from newscard.card import render_card
from newscard.comment import CommentRejected, CommentWriter
from newscard.errors import ImageDecodeError, TransientIOError
from newscard.feeds import Article, fetch_latest_articles, load_feed_sources
from newscard.ledger import DedupLedger
from newscard.models import Candidate, CandidateBatch, CardImage, card_path
from newscard.og import extract_og, resolve_publisher_image
from newscard.text import contains_blocked_word

console = Console()


@dataclass
class CollectResult:
    batch: CandidateBatch
    failures: list[dict] = field(default_factory=list)
    issue_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.batch.run_id,
            "batch_id": self.batch.batch_id,
            "candidates": len(self.batch.candidates),
            "failures": self.failures,
            "issue_url": self.issue_url,
        }


def _run_id(ctx) -> str:
    return ctx.run_id or datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")


class Collector:
    """Builds one candidate batch from the configured feeds.

    ``writer`` and ``fetch_articles`` can be swapped out in tests.
    """

    def __init__(self, ctx, writer=None, fetch_articles=fetch_latest_articles):
        self.ctx = ctx
        self.config = ctx.config
        self.writer = writer
        self.fetch_articles = fetch_articles
        self.image_config = self.config.get("image", {})
        self.block_words = self.config.get("filters", {}).get("block_words", [])

    def _ensure_writer(self) -> CommentWriter:
        if self.writer is None:
            self.writer = CommentWriter(self.ctx)
        return self.writer

    def gather(self) -> list[Article]:
        sources = load_feed_sources(self.ctx.path("feeds"))
        console.print(f"[bold]Fetching {len(sources)} feeds[/bold]")
        posted = DedupLedger(self.ctx.path("ledger")).hashes
        articles = self.fetch_articles(sources, self.config, posted)
        console.print(f"  {len(articles)} articles selected")
        return articles

    def build_candidate(self, article: Article, index: int, run_id: str) -> Candidate:
        """Turn one article into a candidate with its card written to disk.

        Raises:
            CommentRejected, ImageDecodeError, TransientIOError: the article
                is dropped by the caller.
        """
        og = extract_og(article.link, timeout=self.ctx.timeout)
        og_title = og.title if og else None
        comment = self._ensure_writer().write(article, og_title)

        background = None
        if self.image_config.get("mode") == "publisher_overlay" and og and og.image:
            background = resolve_publisher_image(
                article.link, og.image, self.image_config.get("license", {}),
                timeout=self.ctx.timeout,
            )

        card = render_card(
            comment=comment,
            title=article.title,
            publisher=article.feed_title,
            index=index,
            image_config=self.image_config,
            background=background,
        )
        path = self.ctx.root / card_path(run_id, card.file_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(card.data)

        return Candidate(
            id=index,
            source_title=article.feed_title,
            article_title=article.title,
            url=article.link,
            category=article.category,
            comment=comment,
            image=CardImage(file_name=card.file_name, caption=card.caption, data=card.data),
            og_title=og_title,
        )

    def collect(self) -> CollectResult:
        run_id = _run_id(self.ctx)
        batch = CandidateBatch(
            generated_at=datetime.now(timezone.utc).isoformat(),
            timezone=self.config.get("timezone", "Asia/Tokyo"),
            run_id=run_id,
        )
        result = CollectResult(batch=batch)
        self._ensure_writer()

        for article in self.gather():
            blocked = contains_blocked_word(f"{article.title} {article.snippet}", self.block_words)
            if blocked:
                console.print(f"  [dim]Blocked word '{blocked}': {article.title[:60]}[/dim]")
                continue

            index = len(batch.candidates) + 1
            console.print(f"  [{index}] {article.feed_title}: {article.title[:60]}")
            try:
                candidate = self.build_candidate(article, index, run_id)
            except (CommentRejected, ImageDecodeError, TransientIOError) as e:
                console.print(f"  [red]✗ {article.link}: {e}[/red]")
                result.failures.append({"url": article.link, "stage": type(e).__name__, "error": str(e)})
                continue
            except Exception as e:
                console.print(f"  [red]✗ {article.link}: unexpected error: {e}[/red]")
                result.failures.append({"url": article.link, "stage": "unexpected", "error": str(e)})
                continue
            batch.candidates.append(candidate)

        batch.validate()
        return result


def run_collect(ctx, store, writer=None, fetch_articles=fetch_latest_articles) -> CollectResult:
    """Collect a batch, save it locally and open the proposal issue."""
    collector = Collector(ctx, writer=writer, fetch_articles=fetch_articles)
    result = collector.collect()
    batch = result.batch

    if result.failures:
        console.print(f"[yellow]{len(result.failures)} article(s) dropped:[/yellow]")
        for failure in result.failures:
            console.print(f"  [dim]{failure['stage']}: {failure['url']}[/dim]")

    if not batch.candidates:
        console.print("[yellow]No candidates produced, nothing to propose.[/yellow]")
        return result

    store.save(batch)
    result.issue_url = store.publish_proposal(batch)
    if result.issue_url:
        console.print(f"[bold green]Proposal issue:[/bold green] {result.issue_url}")
    return result
