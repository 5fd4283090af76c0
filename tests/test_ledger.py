import json
from unittest.mock import Mock

import pytest

from newscard import ledger as ledger_module
from newscard.errors import ConflictError
from newscard.ledger import DedupLedger, commit_ledger_if_changed, normalize_url, url_hash
from newscard.models import LedgerEntry


def _entry(n: int) -> LedgerEntry:
    url = f"https://news.example.com/a/{n}"
    return LedgerEntry(
        url_hash=url_hash(url),
        url=url,
        published_at=f"2024-05-0{n}T00:00:00+00:00",
        published_id=str(1000 + n),
        batch_id=7,
    )


def test_load_returns_appended_entries_in_order(tmp_path):
    path = tmp_path / "data" / "posted.json"
    ledger = DedupLedger(path)
    entries = [_entry(3), _entry(1), _entry(2)]
    for entry in entries:
        ledger.append(entry)

    assert DedupLedger(path).load() == entries


def test_duplicate_append_raises_and_leaves_file_unchanged(tmp_path):
    path = tmp_path / "posted.json"
    ledger = DedupLedger(path)
    ledger.append(_entry(1))
    before = path.read_bytes()

    with pytest.raises(ConflictError):
        ledger.append(_entry(1))

    assert path.read_bytes() == before
    assert len(DedupLedger(path).load()) == 1


def test_missing_file_is_empty(tmp_path):
    ledger = DedupLedger(tmp_path / "nope.json")
    assert ledger.load() == []
    assert not ledger.contains(url_hash("https://news.example.com/a/1"))


@pytest.mark.parametrize("content", ['{"not": "a list"}', "not json at all", ""])
def test_unreadable_file_is_empty(tmp_path, content):
    path = tmp_path / "posted.json"
    path.write_text(content)
    assert DedupLedger(path).load() == []


def test_malformed_entries_are_ignored(tmp_path):
    path = tmp_path / "posted.json"
    good = _entry(1)
    path.write_text(json.dumps([good.to_dict(), {"url": "missing fields"}]))
    assert DedupLedger(path).load() == [good]


def test_contains_url_uses_normalised_hash(tmp_path):
    ledger = DedupLedger(tmp_path / "posted.json")
    ledger.append(_entry(1))
    assert ledger.contains_url("HTTPS://News.Example.com/a/1/?utm_source=x#top")


@pytest.mark.parametrize("variant", [
    "https://news.example.com/a/1/",
    "https://NEWS.example.com/a/1",
    "https://news.example.com/a/1#comments",
    "https://news.example.com/a/1?utm_source=rss&utm_medium=feed",
    "https://news.example.com/a/1?fbclid=abc",
])
def test_url_variants_share_a_hash(variant):
    assert url_hash(variant) == url_hash("https://news.example.com/a/1")


def test_meaningful_query_is_kept():
    assert normalize_url("https://example.com/p?id=4&utm_campaign=z") == "https://example.com/p?id=4"
    assert url_hash("https://example.com/p?id=4") != url_hash("https://example.com/p?id=5")


def test_hash_is_fixed_length():
    assert len(url_hash("https://example.com/" + "x" * 500)) == 64


def test_git_commit_is_skipped_outside_actions(tmp_path, monkeypatch):
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    path = tmp_path / "posted.json"
    path.write_text("[]")
    assert commit_ledger_if_changed(path, tmp_path) is False


def test_git_commit_is_skipped_for_ledger_outside_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    run_git = Mock()
    monkeypatch.setattr(ledger_module, "_run_git", run_git)
    repo = tmp_path / "repo"
    repo.mkdir()
    path = tmp_path / "elsewhere" / "posted.json"
    path.parent.mkdir()
    path.write_text("[]")

    assert commit_ledger_if_changed(path, repo) is False
    run_git.assert_not_called()
