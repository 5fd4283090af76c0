"""
Data model for one collect run: candidates, their cards, and the batch
that holds them. Also the immutable ledger entry written after a publish.

Batches are serialised to plain dicts with snake_case keys. Image bytes
never enter the dict; the card is referenced by a path derived from the
batch's run id and the candidate's file name.
"""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path

from rich.console import Console

from newscard.errors import MetadataCorruptError

console = Console()

STATUSES = ("proposed", "posted", "skipped")
CARDS_PREFIX = "cards"


def card_path(run_id: str | None, file_name: str) -> str:
    """Relative path of a rendered card, e.g. ``cards/123456/candidate-01-nhk.png``."""
    return f"{CARDS_PREFIX}/{run_id or 'local'}/{file_name}"


@dataclass
class CardImage:
    """A rendered card. ``data`` is excluded from equality and serialisation."""
    file_name: str
    caption: str
    data: bytes | None = field(default=None, repr=False, compare=False)


@dataclass
class Candidate:
    """One proposed post."""
    id: int
    source_title: str
    article_title: str
    url: str
    category: str
    comment: str
    image: CardImage
    status: str = "proposed"            # "proposed", "posted", "skipped"
    rejection_reason: str | None = None
    published_id: str | None = None
    published_at: str | None = None
    og_title: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("posted", "skipped")

    def mark_posted(self, published_id: str, published_at: str):
        self.status = "posted"
        self.published_id = published_id
        self.published_at = published_at
        self.rejection_reason = None

    def mark_skipped(self, reason: str):
        self.status = "skipped"
        self.rejection_reason = reason
        self.published_id = None
        self.published_at = None

    def validate(self):
        """Raise MetadataCorruptError when the status fields are inconsistent."""
        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id < 1:
            raise MetadataCorruptError(f"Candidate id must be a positive integer: {self.id!r}")
        if self.status not in STATUSES:
            raise MetadataCorruptError(f"Candidate {self.id}: unknown status {self.status!r}")
        posted_fields = bool(self.published_id) and bool(self.published_at)
        if (self.status == "posted") != posted_fields:
            raise MetadataCorruptError(
                f"Candidate {self.id}: status {self.status!r} disagrees with published fields"
            )
        if (self.status == "skipped") != bool(self.rejection_reason):
            raise MetadataCorruptError(
                f"Candidate {self.id}: status {self.status!r} disagrees with rejection_reason"
            )
        for name in ("source_title", "article_title", "url", "category", "comment"):
            if not isinstance(getattr(self, name), str):
                raise MetadataCorruptError(f"Candidate {self.id}: {name} must be a string")

    def to_dict(self, run_id: str | None = None) -> dict:
        data = {
            "id": self.id,
            "source_title": self.source_title,
            "article_title": self.article_title,
            "url": self.url,
            "category": self.category,
            "comment": self.comment,
            "image": {
                "file_name": self.image.file_name,
                "caption": self.image.caption,
                "path": card_path(run_id, self.image.file_name),
            },
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "published_id": self.published_id,
            "published_at": self.published_at,
            "og_title": self.og_title,
        }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Candidate":
        if not isinstance(data, dict):
            raise MetadataCorruptError(f"Candidate entry must be an object, got {type(data).__name__}")
        data = dict(data)
        image_data = data.pop("image", None)
        if not isinstance(image_data, dict):
            raise MetadataCorruptError(f"Candidate {data.get('id')!r}: missing image block")
        image_data = dict(image_data)
        image_data.pop("path", None)
        try:
            image = CardImage(**image_data)
            candidate = cls(image=image, **data)
        except TypeError as e:
            raise MetadataCorruptError(f"Candidate {data.get('id')!r}: {e}") from e
        if image.data is not None:
            raise MetadataCorruptError(f"Candidate {candidate.id}: inline image data is not accepted")
        candidate.validate()
        return candidate


@dataclass
class CandidateBatch:
    """One run's proposal set. Membership is fixed once created."""
    generated_at: str
    timezone: str
    batch_id: int | None = None
    run_id: str | None = None
    candidates: list[Candidate] = field(default_factory=list)

    def get(self, candidate_id: int) -> Candidate | None:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    def select(self, ids) -> list[Candidate]:
        """Return candidates whose id is in ``ids``, in increasing id order."""
        wanted = set(ids)
        return sorted(
            (c for c in self.candidates if c.id in wanted),
            key=lambda c: c.id,
        )

    def validate(self):
        ids = [c.id for c in self.candidates]
        if ids != list(range(1, len(ids) + 1)):
            raise MetadataCorruptError(f"Candidate ids must be contiguous from 1, got {ids}")
        if self.batch_id is not None and (not isinstance(self.batch_id, int) or isinstance(self.batch_id, bool)):
            raise MetadataCorruptError(f"batch_id must be an integer or null: {self.batch_id!r}")

    @property
    def stats(self) -> dict:
        counts = {status: 0 for status in STATUSES}
        for candidate in self.candidates:
            counts[candidate.status] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "generated_at": self.generated_at,
            "timezone": self.timezone,
            "run_id": self.run_id,
            "candidates": [c.to_dict(self.run_id) for c in self.candidates],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CandidateBatch":
        if not isinstance(data, dict):
            raise MetadataCorruptError(f"Batch must be an object, got {type(data).__name__}")
        data = dict(data)
        raw_candidates = data.pop("candidates", None)
        if not isinstance(raw_candidates, list):
            raise MetadataCorruptError("Batch is missing its candidates list")
        try:
            batch = cls(**data)
        except TypeError as e:
            raise MetadataCorruptError(f"Batch: {e}") from e
        batch.candidates = [Candidate.from_dict(c) for c in raw_candidates]
        batch.validate()
        return batch

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        console.print(f"[green]Batch saved to {path}[/green]")

    @classmethod
    def load(cls, path: Path) -> "CandidateBatch":
        """Load a batch from the local cache. Raises FileNotFoundError if absent."""
        with open(path, encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise MetadataCorruptError(f"{path} is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of a successful publish."""
    url_hash: str
    url: str
    published_at: str
    published_id: str
    batch_id: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)
