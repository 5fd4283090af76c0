import copy

import pytest

from newscard.config import DEFAULTS, AppContext
from newscard.models import Candidate, CandidateBatch, CardImage


def make_candidate(cid: int, **overrides) -> Candidate:
    fields = dict(
        id=cid,
        source_title="NHK",
        article_title=f"Article number {cid}",
        url=f"https://news.example.com/articles/{cid}",
        category="general",
        comment=f"Comment {cid}",
        image=CardImage(file_name=f"candidate-{cid:02d}-nhk.png", caption=f"NHK Article number {cid}"),
    )
    fields.update(overrides)
    return Candidate(**fields)


def make_batch(count: int = 3, **overrides) -> CandidateBatch:
    fields = dict(
        generated_at="2024-05-01T00:00:00+00:00",
        timezone="Asia/Tokyo",
        batch_id=7,
        run_id="9001",
        candidates=[make_candidate(i) for i in range(1, count + 1)],
    )
    fields.update(overrides)
    return CandidateBatch(**fields)


@pytest.fixture
def ctx(tmp_path):
    return AppContext(config=copy.deepcopy(DEFAULTS), root=tmp_path, env={})


@pytest.fixture
def batch():
    return make_batch()
