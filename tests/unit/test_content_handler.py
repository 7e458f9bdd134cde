from __future__ import annotations

import base64
import json
import logging

import pytest

from common.config import ServiceConfig
from protect import handler
from protect.handler import ContentService, parse_range_header
from store.s3_store import S3AssetStore
from viewer.opener import decrypt


BUCKET = "worksheets"
KEY = bytes(range(32))
PDF = b"%PDF-1.7 " + bytes(range(256))

META = {
    "documentName": "Fractions",
    "drmProtectedPages": [1],
    "regions": [{"id": "r1", "page": 1, "x": 1, "y": 1, "width": 2, "height": 2, "name": "Q1", "description": ["a"]}],
}


def _event(body=None, *, method="POST", query=None, headers=None):
    return {
        "httpMethod": method,
        "body": json.dumps(body) if body is not None else None,
        "queryStringParameters": query,
        "headers": headers or {},
    }


@pytest.fixture
def service(fake_s3, monkeypatch) -> ContentService:
    fake_s3.put(BUCKET, "u1/WS1/1.pdf", PDF)
    fake_s3.put(BUCKET, "WS2.pdf", PDF)
    fake_s3.put(BUCKET, "data/WS1.json", json.dumps(META).encode())
    fake_s3.put(BUCKET, "data/WS2.json", json.dumps(META).encode())
    svc = ContentService(
        config=ServiceConfig(bucket=BUCKET, page_key=KEY),
        store=S3AssetStore(s3=fake_s3, bucket=BUCKET),
        clock=lambda: "2026-01-01T00:00:00+00:00",
    )
    monkeypatch.setattr(handler, "_build_service", lambda require_key: svc)
    return svc


def _json(resp):
    return json.loads(resp["body"])


def test_encrypted_handler_returns_decryptable_page(service):
    resp = handler.encrypted_worksheet_handler(_event({"worksheetId": "WS1", "userId": "u1", "pageIndex": 1}), None)
    assert resp["statusCode"] == 200
    assert resp["headers"]["Access-Control-Allow-Origin"] == "*"
    body = _json(resp)
    assert decrypt(body["encryptedPdf"], body["iv"], KEY) == PDF
    assert body["encrypted"] is True
    assert body["meta"]["documentName"] == "Fractions"


def test_each_response_uses_fresh_iv(service):
    ev = _event({"worksheetId": "WS1", "userId": "u1", "pageIndex": 1, "includeMeta": False})
    first = _json(handler.encrypted_worksheet_handler(ev, None))
    second = _json(handler.encrypted_worksheet_handler(ev, None))
    assert first["iv"] != second["iv"]
    assert "meta" not in first


def test_encrypted_handler_audits_access(service, caplog):
    caplog.set_level(logging.INFO, logger="audit")
    handler.encrypted_worksheet_handler(_event({"worksheetId": "WS1", "userId": "u1", "pageIndex": 1}), None)
    records = [r for r in caplog.records if r.name == "audit"]
    assert len(records) == 1
    assert records[0].getMessage() == (
        "asset_access requester=u1 asset=u1/WS1/1.pdf channel=encrypted at=2026-01-01T00:00:00+00:00"
    )


@pytest.mark.parametrize(
    "body,status,error",
    [
        ({}, 400, "worksheetId is required"),
        ({"worksheetId": "../x"}, 400, "Invalid worksheetId format"),
        ({"worksheetId": "WS1", "pageIndex": "two"}, 400, "pageIndex must be an integer"),
        ({"worksheetId": "WS9", "userId": "u1"}, 404, "PDF not found"),
    ],
)
def test_encrypted_handler_errors(service, body, status, error):
    resp = handler.encrypted_worksheet_handler(_event(body), None)
    assert resp["statusCode"] == status
    assert _json(resp)["error"] == error


def test_non_json_body_is_bad_request(service):
    ev = _event()
    ev["body"] = "{nope"
    assert handler.encrypted_worksheet_handler(ev, None)["statusCode"] == 400


def test_missing_configuration_is_500(monkeypatch):
    for name in ("ASSET_BUCKET", "WORKSHEET_ASSET_BUCKET", "PARAM_PREFIX", "WORKSHEET_PARAM_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    resp = handler.encrypted_worksheet_handler(_event({"worksheetId": "WS1"}), None)
    assert resp["statusCode"] == 500
    assert "ASSET_BUCKET" in _json(resp)["error"]


def test_missing_key_is_500_without_details_leak(fake_s3, monkeypatch):
    fake_s3.put(BUCKET, "WS1/1.pdf", PDF)
    svc = ContentService(config=ServiceConfig(bucket=BUCKET), store=S3AssetStore(s3=fake_s3, bucket=BUCKET))
    monkeypatch.setattr(handler, "_build_service", lambda require_key: svc)
    resp = handler.encrypted_worksheet_handler(_event({"worksheetId": "WS1", "pageIndex": 1}), None)
    assert resp["statusCode"] == 500
    assert _json(resp) == {"error": "Page encryption key is not configured"}


def test_unexpected_exception_is_generic_500(service, monkeypatch):
    def boom(*_a, **_k):
        raise KeyError("internal")

    monkeypatch.setattr(service, "encrypted_content", boom)
    resp = handler.encrypted_worksheet_handler(_event({"worksheetId": "WS1"}), None)
    assert resp["statusCode"] == 500
    assert _json(resp) == {"error": "Internal server error"}


def test_options_preflight(service):
    resp = handler.encrypted_worksheet_handler({"httpMethod": "OPTIONS"}, None)
    assert resp["statusCode"] == 200
    assert resp["body"] == "ok"


def test_worksheet_data_returns_meta_and_signed_url(service, caplog):
    caplog.set_level(logging.INFO, logger="audit")
    resp = handler.worksheet_data_handler(_event({"worksheetId": "WS1", "userId": "u1", "pageIndex": 1}), None)
    assert resp["statusCode"] == 200
    body = _json(resp)
    assert body["pdfUrl"] == "https://worksheets.s3.test/u1/WS1/1.pdf?X-Amz-Expires=300"
    assert body["meta"]["regions"][0]["name"] == "Q1"
    assert any("channel=signed-url" in r.getMessage() for r in caplog.records if r.name == "audit")


def test_worksheet_data_unknown_worksheet(service):
    resp = handler.worksheet_data_handler(_event({"worksheetId": "NOPE"}), None)
    assert resp["statusCode"] == 404
    assert _json(resp)["error"] == "Worksheet not found"


def test_stream_full_body(service):
    resp = handler.stream_handler(_event(method="GET", query={"id": "WS2"}), None)
    assert resp["statusCode"] == 200
    assert resp["isBase64Encoded"] is True
    assert base64.b64decode(resp["body"]) == PDF
    assert resp["headers"]["ETag"] == f'"WS2-{len(PDF)}"'
    assert resp["headers"]["Content-Length"] == str(len(PDF))


def test_stream_range(service):
    resp = handler.stream_handler(
        _event(method="GET", query={"id": "WS2"}, headers={"Range": "bytes=0-3"}), None
    )
    assert resp["statusCode"] == 206
    assert base64.b64decode(resp["body"]) == b"%PDF"
    assert resp["headers"]["Content-Range"] == f"bytes 0-3/{len(PDF)}"
    assert resp["headers"]["Content-Length"] == "4"


def test_stream_unsatisfiable_range(service):
    resp = handler.stream_handler(
        _event(method="GET", query={"id": "WS2"}, headers={"range": f"bytes={len(PDF)}-"}), None
    )
    assert resp["statusCode"] == 416
    assert resp["headers"]["Content-Range"] == f"bytes */{len(PDF)}"


def test_stream_head_has_no_body(service):
    resp = handler.stream_handler(_event(method="HEAD", query={"id": "WS2"}), None)
    assert resp["statusCode"] == 200
    assert resp["body"] == ""
    assert resp["headers"]["Content-Length"] == str(len(PDF))


def test_stream_rejects_other_methods_and_bad_ids(service):
    assert handler.stream_handler(_event(method="PUT", query={"id": "WS2"}), None)["statusCode"] == 405
    resp = handler.stream_handler(_event(method="GET", query={"id": "a/b"}), None)
    assert resp["statusCode"] == 400
    assert _json(resp)["error"] == "Invalid Worksheet ID format"


@pytest.mark.parametrize(
    "header,expected",
    [
        ("bytes=0-9", (0, 9)),
        ("bytes=5-", (5, 99)),
        ("bytes=90-120", None),
        ("bytes=9-3", None),
        ("items=0-1", None),
        ("", None),
    ],
)
def test_parse_range_header(header, expected):
    assert parse_range_header(header, 100) == expected


def test_setup_check_secrets(service):
    resp = handler.setup_handler(_event({"action": "check-secrets"}), None)
    assert resp["statusCode"] == 200
    assert _json(resp)["status"] == "Ready"


def test_setup_test_encryption(service):
    resp = handler.setup_handler(_event({"action": "test-encryption"}), None)
    assert _json(resp)["success"] is True


def test_setup_without_key(fake_s3, monkeypatch):
    svc = ContentService(config=ServiceConfig(bucket=BUCKET), store=S3AssetStore(s3=fake_s3, bucket=BUCKET))
    monkeypatch.setattr(handler, "_build_service", lambda require_key: svc)
    status = _json(handler.setup_handler(_event({"action": "check-secrets"}), None))
    assert status["status"] == "Needs Configuration"
    resp = handler.setup_handler(_event({"action": "test-encryption"}), None)
    assert resp["statusCode"] == 400


def test_setup_unknown_action(service):
    resp = handler.setup_handler(_event({"action": "drop-tables"}), None)
    assert resp["statusCode"] == 400
    assert _json(resp)["error"] == "Invalid action"
