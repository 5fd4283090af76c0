import json

import pytest

from newscard.approval import parse_approval, read_event


@pytest.mark.parametrize("text,expected", [
    ("approve: 1,3,3,2", [1, 2, 3]),
    ("no marker here", []),
    ("APPROVE : 2, 1", [1, 2]),
    ("Looks good!\n\napprove:4", [4]),
    ("approve: 0, 5", [5]),
    ("approve: ", []),
    ("disapprove: 1", []),
    ("", []),
])
def test_parse_approval(text, expected):
    assert parse_approval(text) == expected


def test_read_event(tmp_path):
    path = tmp_path / "event.json"
    path.write_text(json.dumps({
        "action": "created",
        "issue": {"number": 12, "title": "AutoPost proposal 2024-05-01 09:00"},
        "comment": {"body": "approve: 3, 1", "user": {"login": "reviewer"}},
    }))
    event = read_event(path)
    assert event.numbers == [1, 3]
    assert event.batch_id == 12
    assert event.author == "reviewer"


def test_read_event_without_comment(tmp_path):
    path = tmp_path / "event.json"
    path.write_text(json.dumps({"issue": {"number": 3}}))
    event = read_event(path)
    assert event.numbers == []
    assert event.batch_id == 3
