"""
Batch persistence across the proposal issue and the local cache.

The issue body is the source of truth; ``out/latest-metadata.json`` is a
best-effort mirror. Reads try the issue first and fall back to the local
file when the issue is unreachable, unauthenticated, has no metadata
block, or carries a corrupt one. Writes always go to both.
"""

from datetime import datetime, timezone

from rich.console import Console

from newscard import metadata
from newscard.errors import BatchNotFoundError, MetadataCorruptError, TransientIOError
from newscard.models import CandidateBatch

console = Console()


class BatchStore:
    """Reads and writes one logical batch in both places."""

    def __init__(self, ctx, issues=None, image_base_url: str | None = None):
        self.ctx = ctx
        self.issues = issues
        self.image_base_url = image_base_url
        self.local_path = ctx.path("local_batch")

    def resolve(self, batch_id: int | None = None) -> tuple[CandidateBatch, str]:
        """Load the batch, preferring the issue. Returns ``(batch, source)``.

        Raises:
            MetadataCorruptError: The issue block is corrupt and there is no
                usable local cache, or the local cache itself is corrupt.
            BatchNotFoundError: Neither copy is available.
        """
        issue_error = None
        if batch_id and self.issues is not None:
            try:
                batch = metadata.decode(self.issues.fetch_issue_body(batch_id))
            except TransientIOError as e:
                console.print(f"[yellow]Could not read issue #{batch_id}: {e}[/yellow]")
                batch = None
            except MetadataCorruptError as e:
                console.print(f"[yellow]Issue #{batch_id} metadata is corrupt: {e}[/yellow]")
                issue_error = e
                batch = None
            if batch is not None:
                if batch.batch_id is None:
                    batch.batch_id = batch_id
                return batch, "issue"
            if issue_error is None:
                console.print(f"[yellow]Issue #{batch_id} has no metadata block.[/yellow]")

        try:
            batch = CandidateBatch.load(self.local_path)
        except FileNotFoundError:
            if issue_error is not None:
                raise issue_error
            raise BatchNotFoundError(
                f"No batch for issue #{batch_id} and no local cache at {self.local_path}"
            )

        if batch_id and batch.batch_id and batch.batch_id != batch_id:
            raise BatchNotFoundError(
                f"Local cache holds batch #{batch.batch_id}, not the requested #{batch_id}"
            )
        if batch.batch_id is None and batch_id:
            batch.batch_id = batch_id
        console.print(f"[yellow]Using local cache {self.local_path}.[/yellow]")
        return batch, "local"

    def save(self, batch: CandidateBatch) -> dict:
        """Write the local cache, then the issue body. Returns what was written."""
        written = {"local": False, "issue": False}
        batch.save(self.local_path)
        written["local"] = True

        if self.issues is not None and batch.batch_id:
            try:
                self.issues.update_issue(batch.batch_id, self.render(batch))
                written["issue"] = True
            except TransientIOError as e:
                console.print(f"[yellow]Issue #{batch.batch_id} not updated: {e}[/yellow]")
        return written

    def render(self, batch: CandidateBatch) -> str:
        return metadata.encode(batch, image_base_url=self.image_base_url)

    def publish_proposal(self, batch: CandidateBatch) -> str | None:
        """Open the proposal issue for a fresh batch and record its number.

        Returns the issue URL, or None when GitHub is not configured.
        """
        if self.issues is None:
            console.print("[yellow]GitHub credentials missing, proposal issue not created.[/yellow]")
            return None
        self.issues.ensure_label()
        title = metadata.format_issue_title(
            datetime.now(timezone.utc), batch.timezone,
        )
        created = self.issues.create_issue(title, self.render(batch))
        batch.batch_id = created["number"]
        self.save(batch)
        return created["html_url"]
