"""
Dedup ledger: the durable at-most-once guard for publishing.

The ledger is a JSON array of entries keyed by the SHA-256 of the
normalised article URL. It is append-only. The whole array is rewritten
after every successful append, so a crash before an append leaves the
file untouched and the run can simply be retried.

Reading is permissive: a missing file, invalid JSON or a non-array
document all count as an empty ledger (with a warning for the latter two).
"""

import hashlib
import json
import os
import subprocess
from pathlib import Path
from urllib.parse import urlparse, parse_qsl, urlencode, urlunparse

from rich.console import Console

from newscard.errors import ConflictError
from newscard.models import LedgerEntry

console = Console()

TRACKING_PARAM_PREFIXES = ("utm_",)
TRACKING_PARAM_NAMES = {
    "fbclid",
    "gclid",
    "dclid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "mkt_tok",
    "yclid",
    "ref_src",
}


def _is_tracking_param(name: str) -> bool:
    lower = name.lower()
    if any(lower.startswith(prefix) for prefix in TRACKING_PARAM_PREFIXES):
        return True
    return lower in TRACKING_PARAM_NAMES


def normalize_url(url: str) -> str:
    """Canonical form of an article URL used for hashing.

    Lowercases scheme and host, drops the fragment, tracking parameters
    and any trailing slash on the path.
    """
    url = (url or "").strip()
    if not url:
        return ""
    parsed = urlparse(url)
    netloc = parsed.netloc.lower()
    path = (parsed.path or "").rstrip("/")
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if not _is_tracking_param(k)],
        doseq=True,
    )
    return urlunparse(
        parsed._replace(scheme=parsed.scheme.lower(), netloc=netloc, path=path, query=query, fragment="")
    )


def url_hash(url: str) -> str:
    """Fixed-length ledger key for an article URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


class DedupLedger:
    """Append-only record of published URLs, persisted as a JSON array."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: list[LedgerEntry] = []
        self._hashes: set[str] = set()
        self._loaded = False

    def load(self) -> list[LedgerEntry]:
        """Read the ledger file. Absence is not an error."""
        self.entries = []
        self._hashes = set()
        self._loaded = True

        if not self.path.exists():
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[yellow]Could not read ledger {self.path} ({e}), treating as empty.[/yellow]")
            return []

        if not isinstance(data, list):
            console.print(f"[yellow]Ledger {self.path} is not a JSON array, treating as empty.[/yellow]")
            return []

        for raw in data:
            try:
                entry = LedgerEntry(**raw)
            except TypeError as e:
                console.print(f"[yellow]Ignoring malformed ledger entry {raw!r}: {e}[/yellow]")
                continue
            if entry.url_hash in self._hashes:
                continue
            self.entries.append(entry)
            self._hashes.add(entry.url_hash)

        return list(self.entries)

    def _ensure_loaded(self):
        if not self._loaded:
            self.load()

    def contains(self, key: str) -> bool:
        self._ensure_loaded()
        return key in self._hashes

    def contains_url(self, url: str) -> bool:
        return self.contains(url_hash(url))

    @property
    def hashes(self) -> frozenset[str]:
        self._ensure_loaded()
        return frozenset(self._hashes)

    def append(self, entry: LedgerEntry):
        """Append and persist. Raises ConflictError if the hash is present."""
        self._ensure_loaded()
        if entry.url_hash in self._hashes:
            raise ConflictError(f"Ledger already contains {entry.url_hash[:12]} ({entry.url})")
        self.entries.append(entry)
        self._hashes.add(entry.url_hash)
        try:
            self.save()
        except OSError:
            self.entries.pop()
            self._hashes.discard(entry.url_hash)
            raise

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([e.to_dict() for e in self.entries], indent=2, ensure_ascii=False) + "\n"
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)


def _run_git(args: list[str], cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=False,
    )
    if result.returncode != 0:
        raise RuntimeError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout


def commit_ledger_if_changed(path: Path, repo_root: Path) -> bool:
    """Commit and push the ledger file from CI so later runs see it.

    Best effort: failures are logged, never raised. Returns True when a
    commit was pushed.
    """
    if os.getenv("GITHUB_ACTIONS") != "true":
        return False

    try:
        rel = str(Path(path).resolve().relative_to(Path(repo_root).resolve()))
        if not _run_git(["status", "--porcelain", rel], repo_root).strip():
            return False
        _run_git(["config", "--local", "user.email", "github-actions[bot]@users.noreply.github.com"], repo_root)
        _run_git(["config", "--local", "user.name", "github-actions[bot]"], repo_root)
        _run_git(["add", rel], repo_root)
        _run_git(["commit", "-m", "chore: update posted ledger"], repo_root)
        _run_git(["push"], repo_root)
    except (RuntimeError, OSError, ValueError) as e:
        console.print(f"[red]Ledger commit failed: {e}[/red]")
        return False

    console.print(f"[green]Committed ledger {rel}.[/green]")
    return True
