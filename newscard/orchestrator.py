"""
Publish orchestrator.

Drives each approved candidate from ``proposed`` to ``posted`` or
``skipped``:
    1. Ledger check (already published -> skip, no network calls)
    2. Media upload: primary strategy, then the secondary once
    3. Post with the uploaded media
    4. Mark posted and append to the ledger

Candidates are processed in increasing id order and independently: a
failure for one never stops the rest. The batch is persisted after the
loop no matter how many candidates succeeded.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from rich.console import Console

from newscard.errors import ConflictError
from newscard.ledger import DedupLedger, url_hash
from newscard.models import Candidate, CandidateBatch, LedgerEntry, card_path

console = Console()

SKIP_ALREADY_PUBLISHED = "already-published"
SKIP_MEDIA_UPLOAD_FAILED = "media-upload-failed"
SKIP_PUBLISH_FAILED = "publish-failed"

POST_URL = "https://x.com/i/web/status/{id}"

Uploader = Callable[[bytes, str], str]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PublishResult:
    """What happened to each selected candidate in one run."""
    approved: list[int] = field(default_factory=list)
    posted: list[int] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)
    unchanged: list[int] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "posted": self.posted,
            "skipped": {str(k): v for k, v in self.skipped.items()},
            "unchanged": self.unchanged,
        }


class PublishOrchestrator:
    """Publishes approved candidates with fallback and failure isolation.

    Args:
        ledger: The dedup ledger, consulted before any network call.
        uploaders: ``(name, upload(data, alt_text) -> media_id)`` pairs,
            primary first.
        post: ``post(text, media_ids) -> published_id``.
        store: Anything with ``save(batch)``; called once after the loop.
        image_root: Directory that ``cards/<run_id>/...`` paths are relative to.
        clock: Returns the ISO timestamp recorded on success.
    """

    def __init__(
        self,
        ledger: DedupLedger,
        uploaders: list[tuple[str, Uploader]],
        post: Callable[[str, list[str]], str],
        store=None,
        image_root: Path | None = None,
        clock: Callable[[], str] = _utc_now,
    ):
        self.ledger = ledger
        self.uploaders = uploaders
        self.post = post
        self.store = store
        self.image_root = Path(image_root) if image_root else Path.cwd()
        self.clock = clock

    def run(self, batch: CandidateBatch, approved: list[int]) -> PublishResult:
        result = PublishResult(approved=sorted(set(approved)))
        selected = batch.select(result.approved)
        try:
            for candidate in selected:
                if candidate.is_terminal:
                    console.print(
                        f"  [dim]Candidate {candidate.id} already {candidate.status}, not re-attempted.[/dim]"
                    )
                    result.unchanged.append(candidate.id)
                    continue
                self._publish_one(batch, candidate, result)
        finally:
            if self.store is not None:
                self.store.save(batch)
        return result

    def load_image(self, batch: CandidateBatch, candidate: Candidate) -> bytes:
        if candidate.image.data is not None:
            return candidate.image.data
        path = self.image_root / card_path(batch.run_id, candidate.image.file_name)
        return path.read_bytes()

    def _skip(self, candidate: Candidate, reason: str, result: PublishResult):
        candidate.mark_skipped(reason)
        result.skipped[candidate.id] = reason

    def _upload(self, candidate: Candidate, data: bytes) -> str | None:
        for name, upload in self.uploaders:
            try:
                media_id = upload(data, candidate.image.caption)
            except Exception as e:
                console.print(
                    f"  [yellow]Candidate {candidate.id} ({candidate.url}): "
                    f"media upload via {name} failed: {e}[/yellow]"
                )
                continue
            console.print(f"  [dim]Candidate {candidate.id}: media {media_id} via {name}[/dim]")
            return media_id
        return None

    def _publish_one(self, batch: CandidateBatch, candidate: Candidate, result: PublishResult):
        key = url_hash(candidate.url)
        if self.ledger.contains(key):
            self._skip(candidate, SKIP_ALREADY_PUBLISHED, result)
            console.print(
                f"  [dim]Candidate {candidate.id} skipped, already published: {candidate.url}[/dim]"
            )
            return

        try:
            data = self.load_image(batch, candidate)
        except OSError as e:
            console.print(
                f"  [red]Candidate {candidate.id} ({candidate.url}): card image unreadable: {e}[/red]"
            )
            self._skip(candidate, SKIP_MEDIA_UPLOAD_FAILED, result)
            return

        media_id = self._upload(candidate, data)
        if media_id is None:
            console.print(
                f"  [red]✗ Candidate {candidate.id} ({candidate.url}): every upload strategy failed[/red]"
            )
            self._skip(candidate, SKIP_MEDIA_UPLOAD_FAILED, result)
            return

        try:
            published_id = self.post(candidate.comment, [media_id])
        except Exception as e:
            console.print(
                f"  [red]✗ Candidate {candidate.id} ({candidate.url}): publish failed: {e}[/red]"
            )
            self._skip(candidate, SKIP_PUBLISH_FAILED, result)
            return

        if not published_id:
            console.print(f"  [red]✗ Candidate {candidate.id} ({candidate.url}): publish returned no post id[/red]")
            self._skip(candidate, SKIP_PUBLISH_FAILED, result)
            return

        candidate.mark_posted(str(published_id), self.clock())
        result.posted.append(candidate.id)
        result.lines.append(
            f"✔️ Candidate {candidate.id} published {POST_URL.format(id=published_id)}"
        )
        console.print(f"  [green]✓ Candidate {candidate.id}[/green] {candidate.article_title[:50]}")
        self._record(batch, candidate, key)

    def _record(self, batch: CandidateBatch, candidate: Candidate, key: str):
        entry = LedgerEntry(
            url_hash=key,
            url=candidate.url,
            published_at=candidate.published_at,
            published_id=candidate.published_id,
            batch_id=batch.batch_id,
        )
        if self.ledger.contains(key):
            return
        try:
            self.ledger.append(entry)
        except ConflictError:
            console.print(f"  [dim]Ledger already has {candidate.url}[/dim]")
        except OSError as e:
            console.print(
                f"  [red]Candidate {candidate.id} ({candidate.url}) posted but ledger write failed: {e}[/red]"
            )
