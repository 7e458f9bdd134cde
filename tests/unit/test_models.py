from __future__ import annotations

import pytest
from pydantic import ValidationError

from common.envelope import EncryptedPayload
from store.models import GuidedWorksheet, RegionWorksheet, parse_worksheet_meta, tag_worksheet_payload


REGION_PAYLOAD = {
    "documentName": "Fractions",
    "documentId": "doc-7",
    "drmProtectedPages": [2, 3],
    "regions": [
        {"id": 1, "page": 2, "x": 10, "y": 20, "width": 30, "height": 40, "name": "Q1", "description": ["s1", "s2"]},
        {"id": "b", "page": 3, "x": 0, "y": 0, "width": 5, "height": 5, "name": "Q2", "description": None},
    ],
}


def test_untagged_payloads_are_tagged_by_shape():
    assert tag_worksheet_payload(REGION_PAYLOAD)["mode"] == "regions"
    assert tag_worksheet_payload({"data": []})["mode"] == "auto"
    assert tag_worksheet_payload({"mode": "auto", "data": []})["mode"] == "auto"
    assert "mode" not in REGION_PAYLOAD  # input left untouched


def test_region_worksheet_parsing():
    meta = parse_worksheet_meta(REGION_PAYLOAD)
    assert isinstance(meta, RegionWorksheet)
    assert meta.document_name == "Fractions"
    assert [r.id for r in meta.regions_for_page(2)] == ["1"]
    assert meta.regions[0].steps == ["s1", "s2"]
    assert meta.regions[1].steps == []


@pytest.mark.parametrize(
    "flags,page,expected",
    [
        ({"drmProtectedPages": [2]}, 2, True),
        ({"drmProtectedPages": [2]}, 1, False),
        ({"drmProtectedPages": True}, 1, True),
        ({"drmProtectedPages": None}, 1, False),
        ({"drmProtected": True}, 9, True),
    ],
)
def test_page_protection_flags(flags, page, expected):
    meta = parse_worksheet_meta({"regions": [], **flags})
    assert meta.is_page_protected(page) is expected


def test_guided_worksheet_parsing():
    meta = parse_worksheet_meta(
        {
            "documentName": "Reading",
            "data": [
                {
                    "page_number": 1,
                    "page_description": "Cover",
                    "guidance": [{"title": "Look", "description": "Find the title.\n\n  \nRead it aloud."}],
                }
            ],
        }
    )
    assert isinstance(meta, GuidedWorksheet)
    item = meta.page(1).guidance[0]
    assert item.name == "Look"
    assert item.steps == ["Find the title.", "Read it aloud."]
    assert meta.page(2) is None


def test_payload_round_trip_keeps_wire_names():
    meta = parse_worksheet_meta(REGION_PAYLOAD)
    payload = meta.to_payload()
    assert payload["documentName"] == "Fractions"
    assert payload["drmProtectedPages"] == [2, 3]
    assert payload["regions"][0]["name"] == "Q1"


def test_invalid_region_rejected():
    with pytest.raises(ValidationError):
        parse_worksheet_meta({"regions": [{"id": "r", "page": 1}]})


def test_encrypted_payload_envelope():
    env = EncryptedPayload(encryptedPdf="Y3Q=", iv="aXY=")
    assert env.to_payload() == {"encryptedPdf": "Y3Q=", "iv": "aXY="}
    with_meta = EncryptedPayload(ciphertext="Y3Q=", iv="aXY=", meta={"regions": []})
    assert with_meta.to_payload() == {"encryptedPdf": "Y3Q=", "iv": "aXY=", "meta": {"regions": []}, "encrypted": True}
