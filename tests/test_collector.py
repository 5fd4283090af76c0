from unittest.mock import Mock

import pytest

from newscard import collector
from newscard.collector import Collector, run_collect
from newscard.comment import CommentRejected
from newscard.feeds import Article
from newscard.ledger import url_hash
from newscard.og import OgMetadata


def _article(n: int, title: str | None = None) -> Article:
    link = f"https://news.example.com/{n}"
    return Article(
        id=url_hash(link), title=title or f"Story {n}", link=link,
        feed_title="NHK", category="general", published=f"2024-05-01T0{n}:00:00+00:00",
    )


class FakeWriter:
    def __init__(self, reject=()):
        self.reject = set(reject)

    def write(self, article, og_title=None):
        if article.link in self.reject:
            raise CommentRejected(f"Comment contains blocked word 'x': {article.title}")
        return f"Take on {article.title}"


@pytest.fixture
def feeds_file(ctx):
    ctx.path("feeds").write_text("- title: NHK\n  url: https://www3.nhk.or.jp/rss/news/cat0.xml\n")


@pytest.fixture(autouse=True)
def no_network(monkeypatch):
    monkeypatch.setattr(collector, "extract_og", lambda url, timeout=15: OgMetadata(title="OG title", url=url))


def test_failed_articles_are_dropped_and_ids_stay_contiguous(ctx, feeds_file):
    articles = [_article(1), _article(2), _article(3)]
    fetch = Mock(return_value=articles)
    writer = FakeWriter(reject={"https://news.example.com/2"})

    result = Collector(ctx, writer=writer, fetch_articles=fetch).collect()

    batch = result.batch
    assert [c.id for c in batch.candidates] == [1, 2]
    assert [c.url for c in batch.candidates] == ["https://news.example.com/1", "https://news.example.com/3"]
    assert batch.candidates[1].image.file_name == "candidate-02-nhk.png"
    assert batch.candidates[0].og_title == "OG title"
    assert result.failures[0]["url"] == "https://news.example.com/2"
    assert result.failures[0]["stage"] == "CommentRejected"
    for candidate in batch.candidates:
        card = ctx.root / "cards" / batch.run_id / candidate.image.file_name
        assert card.read_bytes().startswith(b"\x89PNG")


def test_blocked_titles_are_skipped(ctx, feeds_file):
    ctx.config["filters"]["block_words"] = ["scandal"]
    fetch = Mock(return_value=[_article(1, "Huge Scandal erupts"), _article(2)])

    result = Collector(ctx, writer=FakeWriter(), fetch_articles=fetch).collect()

    assert [c.article_title for c in result.batch.candidates] == ["Story 2"]
    assert result.failures == []


def test_ledger_hashes_are_passed_to_selection(ctx, feeds_file):
    ledger_path = ctx.path("ledger")
    ledger_path.parent.mkdir(parents=True)
    ledger_path.write_text(
        '[{"url_hash": "abc", "url": "https://a", "published_at": "t", "published_id": "1", "batch_id": null}]'
    )
    fetch = Mock(return_value=[])

    Collector(ctx, writer=FakeWriter(), fetch_articles=fetch).collect()

    sources, config, posted = fetch.call_args.args
    assert posted == frozenset({"abc"})
    assert sources[0].title == "NHK"


def test_run_id_comes_from_environment(ctx, feeds_file):
    ctx.env["GITHUB_RUN_ID"] = "424242"
    result = Collector(ctx, writer=FakeWriter(), fetch_articles=Mock(return_value=[_article(1)])).collect()
    assert result.batch.run_id == "424242"
    assert (ctx.root / "cards" / "424242" / "candidate-01-nhk.png").exists()


def test_run_collect_saves_and_proposes(ctx, feeds_file):
    store = Mock()
    store.publish_proposal.return_value = "https://github.com/o/r/issues/3"

    result = run_collect(ctx, store, writer=FakeWriter(), fetch_articles=Mock(return_value=[_article(1)]))

    store.save.assert_called_once_with(result.batch)
    store.publish_proposal.assert_called_once_with(result.batch)
    assert result.issue_url == "https://github.com/o/r/issues/3"
    assert result.to_dict()["candidates"] == 1


def test_run_collect_with_nothing_to_propose(ctx, feeds_file):
    store = Mock()
    result = run_collect(ctx, store, writer=FakeWriter(), fetch_articles=Mock(return_value=[]))
    store.save.assert_not_called()
    assert result.batch.candidates == []


def test_blocked_word_in_snippet_skips_article(ctx, feeds_file):
    ctx.config["filters"]["block_words"] = ["murder"]
    article = _article(1, "Quiet town news")
    article.snippet = "A murder case was reported"
    writer = Mock(wraps=FakeWriter())

    result = Collector(ctx, writer=writer, fetch_articles=Mock(return_value=[article])).collect()

    assert result.batch.candidates == []
    assert result.failures == []
    writer.write.assert_not_called()
