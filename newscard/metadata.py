"""
Metadata codec: a candidate batch <-> an issue body.

The document has two layers. The markdown on top is for reviewers and is
regenerated on every write; it is never parsed. The only authoritative
state is a single JSON block inside an HTML comment tagged
``newscard:metadata``. Image bytes are not embedded; each candidate's
card is referenced by its ``cards/<run_id>/<file_name>`` path.
"""

import json
import re
from datetime import datetime
from zoneinfo import ZoneInfo

from newscard.errors import MetadataCorruptError
from newscard.models import CandidateBatch, card_path

METADATA_TAG = "newscard:metadata"
BLOCK_PATTERN = re.compile(
    r"<!--\s*" + re.escape(METADATA_TAG) + r"\s*\n?(.*?)\s*-->",
    re.DOTALL,
)
POST_URL = "https://x.com/i/web/status/{id}"
APPROVAL_HINT = "Comment `approve: 1,3` to publish candidates by number."

STATUS_MARKERS = {
    "proposed": "\U0001f4dd proposed",
    "posted": "✅ posted",
    "skipped": "⏭️ skipped",
}


def format_issue_title(moment: datetime, timezone: str) -> str:
    local = moment.astimezone(ZoneInfo(timezone))
    return f"AutoPost proposal {local.strftime('%Y-%m-%d %H:%M')}"


def _embed(batch: CandidateBatch) -> str:
    payload = json.dumps(
        batch.to_dict(), ensure_ascii=False, sort_keys=True, separators=(",", ":"),
    )
    # "<" and ">" only occur inside JSON strings; escaping them keeps the comment intact
    payload = payload.replace("<", "\\u003c").replace(">", "\\u003e")
    return f"<!-- {METADATA_TAG}\n{payload}\n-->"


def _escape(text: str) -> str:
    # Feed and model text must never open or close an HTML comment
    return (text or "").replace("<", "&lt;").replace(">", "&gt;")


def _render_candidate(batch: CandidateBatch, candidate, image_base_url: str | None) -> str:
    lines = [
        f"## Candidate {candidate.id}: {STATUS_MARKERS.get(candidate.status, candidate.status)}",
        f"Source: {_escape(candidate.source_title)}",
        f"Category: {_escape(candidate.category)}",
        f"Comment: **{_escape(candidate.comment)}**",
        _escape(candidate.article_title),
        f"[Article link]({_escape(candidate.url)})",
    ]
    if image_base_url and batch.run_id:
        url = f"{image_base_url.rstrip('/')}/{card_path(batch.run_id, candidate.image.file_name)}"
        lines.append(f"![Card {candidate.id}]({url})")
        lines.append(f"[Open card image]({url})")
    if candidate.published_id:
        lines.append(f"Published: {POST_URL.format(id=candidate.published_id)}")
    if candidate.rejection_reason:
        lines.append(f"Skip reason: {_escape(candidate.rejection_reason)}")
    return "\n".join(lines)


def encode(batch: CandidateBatch, image_base_url: str | None = None) -> str:
    """Render the issue body for a batch.

    Args:
        batch: The batch to store.
        image_base_url: Base URL under which ``cards/`` is served (e.g. a
            raw.githubusercontent.com branch URL). Card previews are omitted
            when it is None.
    """
    sections = ["# AutoPost candidates", APPROVAL_HINT]
    sections.extend(
        _render_candidate(batch, c, image_base_url) for c in batch.candidates
    )
    sections.append(_embed(batch))
    return "\n\n".join(sections)


def decode(document: str | None) -> CandidateBatch | None:
    """Extract the batch from an issue body.

    Returns None when the document carries no metadata block. Raises
    MetadataCorruptError when a block exists but is not a valid batch.
    """
    if not document:
        return None
    blocks = BLOCK_PATTERN.findall(document)
    if not blocks:
        return None
    if len(blocks) > 1:
        raise MetadataCorruptError(f"Found {len(blocks)} {METADATA_TAG} blocks, expected one")
    try:
        data = json.loads(blocks[0])
    except json.JSONDecodeError as e:
        raise MetadataCorruptError(f"{METADATA_TAG} block is not valid JSON: {e}") from e
    return CandidateBatch.from_dict(data)
