from datetime import datetime, timezone

import pytest

from newscard import metadata
from newscard.errors import MetadataCorruptError

from conftest import make_batch


def test_round_trip(batch):
    batch.candidates[0].mark_posted("1790000000000000001", "2024-05-01T01:00:00+00:00")
    batch.candidates[1].mark_skipped("publish-failed")
    assert metadata.decode(metadata.encode(batch)) == batch


def test_round_trip_without_batch_id_or_run_id():
    batch = make_batch(batch_id=None, run_id=None)
    assert metadata.decode(metadata.encode(batch)) == batch


def test_round_trip_keeps_comment_close_marker():
    batch = make_batch(1)
    batch.candidates[0].comment = "arrows --> everywhere"
    document = metadata.encode(batch)
    block = document.split("<!-- newscard:metadata", 1)[1]
    assert block.count("-->") == 1
    assert metadata.decode(document).candidates[0].comment == "arrows --> everywhere"


def test_round_trip_with_metadata_tag_in_text_fields():
    batch = make_batch(2)
    batch.candidates[0].article_title = "Docs show <!-- newscard:metadata usage"
    batch.candidates[0].comment = "<!-- newscard:metadata -->"
    batch.candidates[1].mark_skipped("<b>odd</b> reason")
    document = metadata.encode(batch, image_base_url="https://raw.example.com/cards")

    assert document.count("<!-- newscard:metadata") == 1
    assert metadata.decode(document) == batch


def test_image_bytes_are_not_embedded():
    batch = make_batch(1)
    batch.candidates[0].image.data = b"\x89PNG secret bytes"
    document = metadata.encode(batch)
    assert "secret" not in document
    assert '"path":"cards/9001/candidate-01-nhk.png"' in document
    decoded = metadata.decode(document)
    assert decoded.candidates[0].image.data is None


@pytest.mark.parametrize("document", [None, "", "# Just a heading\n\nNo metadata here."])
def test_missing_block_decodes_to_none(document):
    assert metadata.decode(document) is None


def test_invalid_json_raises():
    with pytest.raises(MetadataCorruptError):
        metadata.decode("text\n<!-- newscard:metadata\n{not json\n-->")


def test_unknown_field_raises(batch):
    document = metadata.encode(batch).replace('"category":', '"mystery":1,"category":', 1)
    with pytest.raises(MetadataCorruptError):
        metadata.decode(document)


def test_missing_field_raises(batch):
    document = metadata.encode(batch).replace('"comment":"Comment 1",', "", 1)
    with pytest.raises(MetadataCorruptError):
        metadata.decode(document)


def test_inconsistent_status_raises(batch):
    document = metadata.encode(batch).replace('"status":"proposed"', '"status":"posted"', 1)
    with pytest.raises(MetadataCorruptError):
        metadata.decode(document)


def test_two_blocks_raise(batch):
    document = metadata.encode(batch)
    with pytest.raises(MetadataCorruptError):
        metadata.decode(document + "\n\n" + document)


def test_human_readable_part_is_not_parsed(batch):
    document = metadata.encode(batch).replace("Comment 1", "Edited by hand", 1)
    assert metadata.decode(document).candidates[0].comment == "Comment 1"


def test_card_links_need_base_url(batch):
    assert "raw.githubusercontent.com" not in metadata.encode(batch)
    document = metadata.encode(batch, image_base_url="https://raw.githubusercontent.com/o/r/main/")
    assert "https://raw.githubusercontent.com/o/r/main/cards/9001/candidate-02-nhk.png" in document


def test_status_and_published_link_rendered(batch):
    batch.candidates[0].mark_posted("42", "2024-05-01T01:00:00+00:00")
    batch.candidates[2].mark_skipped("media-upload-failed")
    document = metadata.encode(batch)
    assert "https://x.com/i/web/status/42" in document
    assert "Skip reason: media-upload-failed" in document
    assert "approve: 1,3" in document


def test_issue_title_uses_batch_timezone():
    moment = datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc)
    assert metadata.format_issue_title(moment, "Asia/Tokyo") == "AutoPost proposal 2024-05-02 08:30"
