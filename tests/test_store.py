import pytest

from newscard import metadata
from newscard.errors import BatchNotFoundError, MetadataCorruptError, TransientIOError
from newscard.store import BatchStore

from conftest import make_batch


class FakeIssues:
    def __init__(self, bodies=None, fail=False):
        self.bodies = dict(bodies or {})
        self.fail = fail
        self.updates = []
        self.created = []
        self.labels = 0

    def fetch_issue_body(self, number):
        if self.fail:
            raise TransientIOError("GitHub issue fetch failed (502)")
        return self.bodies.get(number, "")

    def update_issue(self, number, body):
        if self.fail:
            raise TransientIOError("GitHub issue update failed (502)")
        self.updates.append(number)
        self.bodies[number] = body

    def create_issue(self, title, body, labels=None):
        self.created.append(title)
        self.bodies[12] = body
        return {"number": 12, "html_url": "https://github.com/o/r/issues/12"}

    def ensure_label(self, name="news-proposal"):
        self.labels += 1


def test_issue_copy_is_preferred(ctx):
    issue_batch = make_batch(2)
    local_batch = make_batch(3)
    local_batch.save(ctx.path("local_batch"))
    store = BatchStore(ctx, issues=FakeIssues({7: metadata.encode(issue_batch)}))

    batch, source = store.resolve(7)

    assert source == "issue"
    assert batch == issue_batch


def test_issue_without_batch_id_takes_requested_number(ctx):
    issue_batch = make_batch(1, batch_id=None)
    store = BatchStore(ctx, issues=FakeIssues({7: metadata.encode(issue_batch)}))
    batch, _ = store.resolve(7)
    assert batch.batch_id == 7


def test_corrupt_issue_falls_back_to_local(ctx):
    local_batch = make_batch(2)
    local_batch.save(ctx.path("local_batch"))
    store = BatchStore(ctx, issues=FakeIssues({7: "<!-- newscard:metadata\n{broken\n-->"}))

    batch, source = store.resolve(7)

    assert source == "local"
    assert batch == local_batch


def test_corrupt_issue_without_local_cache_raises(ctx):
    store = BatchStore(ctx, issues=FakeIssues({7: "<!-- newscard:metadata\n{broken\n-->"}))
    with pytest.raises(MetadataCorruptError):
        store.resolve(7)


def test_unreachable_issue_falls_back_to_local(ctx):
    make_batch(2).save(ctx.path("local_batch"))
    store = BatchStore(ctx, issues=FakeIssues(fail=True))
    _, source = store.resolve(7)
    assert source == "local"


def test_nothing_available_raises(ctx):
    with pytest.raises(BatchNotFoundError):
        BatchStore(ctx).resolve(7)


def test_local_cache_for_another_issue_is_refused(ctx):
    make_batch(2, batch_id=5).save(ctx.path("local_batch"))
    with pytest.raises(BatchNotFoundError):
        BatchStore(ctx, issues=FakeIssues()).resolve(7)


def test_corrupt_local_cache_raises(ctx):
    path = ctx.path("local_batch")
    path.parent.mkdir(parents=True)
    path.write_text("{oops")
    with pytest.raises(MetadataCorruptError):
        BatchStore(ctx).resolve()


def test_save_writes_both_copies(ctx):
    issues = FakeIssues()
    store = BatchStore(ctx, issues=issues)
    batch = make_batch(2)

    written = store.save(batch)

    assert written == {"local": True, "issue": True}
    assert issues.updates == [7]
    assert metadata.decode(issues.bodies[7]) == batch
    assert store.resolve()[0] == batch


def test_save_survives_issue_outage(ctx):
    store = BatchStore(ctx, issues=FakeIssues(fail=True))
    written = store.save(make_batch(1))
    assert written == {"local": True, "issue": False}
    assert ctx.path("local_batch").exists()


def test_publish_proposal_records_issue_number(ctx):
    issues = FakeIssues()
    store = BatchStore(ctx, issues=issues)
    batch = make_batch(2, batch_id=None)

    url = store.publish_proposal(batch)

    assert url == "https://github.com/o/r/issues/12"
    assert batch.batch_id == 12
    assert issues.labels == 1
    assert issues.created[0].startswith("AutoPost proposal ")
    assert metadata.decode(issues.bodies[12]).batch_id == 12
    assert store.resolve(12)[1] == "issue"


def test_publish_proposal_without_github(ctx):
    assert BatchStore(ctx).publish_proposal(make_batch(1, batch_id=None)) is None
