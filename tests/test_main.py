import json
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from newscard import main
from newscard.ledger import url_hash

from conftest import make_batch


@pytest.fixture
def cli_ctx(ctx, monkeypatch):
    ctx.env.update({"X_CLIENT_ID": "cid", "X_CLIENT_SECRET": "secret", "X_REFRESH_TOKEN": "r"})
    monkeypatch.setattr(main.AppContext, "from_files", lambda *args, **kwargs: ctx)
    return ctx


def _event(tmp_path, body: str, issue: int = 7) -> str:
    path = tmp_path / "event.json"
    path.write_text(json.dumps({"issue": {"number": issue}, "comment": {"body": body, "user": {"login": "rev"}}}))
    return str(path)


def test_post_without_credentials_exits_1(ctx, monkeypatch):
    monkeypatch.setattr(main.AppContext, "from_files", lambda *args, **kwargs: ctx)
    result = CliRunner().invoke(main.cli, ["post", "1"])
    assert result.exit_code == 1
    assert "X_REFRESH_TOKEN" in result.output


def test_post_without_marker_exits_0(cli_ctx, tmp_path):
    cli_ctx.env["GITHUB_EVENT_PATH"] = _event(tmp_path, "Looks good to me")
    result = CliRunner().invoke(main.cli, ["post"])
    assert result.exit_code == 0
    assert "No approval marker" in result.output


def test_post_with_unknown_ids_exits_1(cli_ctx, tmp_path):
    make_batch(2).save(cli_ctx.path("local_batch"))
    cli_ctx.env["GITHUB_EVENT_PATH"] = _event(tmp_path, "approve: 9")
    result = CliRunner().invoke(main.cli, ["post"])
    assert result.exit_code == 1
    assert "match no candidate" in result.output


def test_post_without_any_batch_exits_1(cli_ctx):
    result = CliRunner().invoke(main.cli, ["post", "1", "--issue", "7"])
    assert result.exit_code == 1


def test_post_dry_run_publishes_nothing(cli_ctx, monkeypatch):
    make_batch(2).save(cli_ctx.path("local_batch"))
    login = Mock()
    monkeypatch.setattr(main.XPublisher, "login", login)

    result = CliRunner().invoke(main.cli, ["post", "2", "--dry"])

    assert result.exit_code == 0
    assert "Dry run" in result.output
    login.assert_not_called()


def test_post_publishes_approved_candidates(cli_ctx, monkeypatch):
    batch = make_batch(2)
    for candidate in batch.candidates:
        card = cli_ctx.root / "cards" / batch.run_id / candidate.image.file_name
        card.parent.mkdir(parents=True, exist_ok=True)
        card.write_bytes(b"png")
    batch.save(cli_ctx.path("local_batch"))

    publisher = Mock()
    publisher.upload_strategies.return_value = [("v2", Mock(return_value="m1"))]
    publisher.post.return_value = "555"
    monkeypatch.setattr(main.XPublisher, "login", Mock(return_value=publisher))
    monkeypatch.setattr(main, "commit_ledger_if_changed", Mock(return_value=False))

    result = CliRunner().invoke(main.cli, ["post", "2"])

    assert result.exit_code == 0, result.output
    saved = json.loads(cli_ctx.path("local_batch").read_text())
    assert [c["status"] for c in saved["candidates"]] == ["proposed", "posted"]
    ledger = json.loads(cli_ctx.path("ledger").read_text())
    assert ledger[0]["url_hash"] == url_hash(batch.candidates[1].url)
    log_files = list(cli_ctx.path("log_dir").glob("*.log"))
    assert json.loads(log_files[0].read_text().splitlines()[-1])["action"] == "post"


def test_status_shows_local_batch(cli_ctx):
    make_batch(2).save(cli_ctx.path("local_batch"))
    result = CliRunner().invoke(main.cli, ["status"])
    assert result.exit_code == 0
    assert "Proposed: 2" in result.output


def test_ledger_empty(cli_ctx):
    result = CliRunner().invoke(main.cli, ["ledger"])
    assert result.exit_code == 0
    assert "Ledger is empty" in result.output
