import io
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from starlette.datastructures import Headers, UploadFile

from conftest import JPEG_BYTES, PNG_HEADER, assert_baseline_headers, count
from webapp.files.models import FileRecord
from webapp.files.service import object_metadata
from webapp.files.storage import ObjectStoreError
from webapp.shared.guard import read_image
from webapp.shared.http import ApiError

MIB = 1024 * 1024


def _upload(client, name="photo.jpg", content=JPEG_BYTES, content_type="image/jpeg", **kwargs):
    return client.post("/v1/file", files={"file": (name, content, content_type)}, **kwargs)


def test_upload_jpeg(client, store, database):
    r = _upload(client)
    assert r.status_code == 201
    assert_baseline_headers(r)
    body = r.json()
    assert len(body["id"]) == 36
    uuid.UUID(body["id"])
    assert body["file_name"] == "photo.jpg"
    assert body["url"].startswith("files/") and body["url"].endswith(".jpg")
    assert body["upload_date"]

    stored = store.objects[body["url"]]
    assert stored["body"] == JPEG_BYTES
    assert stored["content_type"] == "image/jpeg"
    assert stored["metadata"]["original-name"] == "photo.jpg"
    assert count(database, FileRecord) == 1


def test_upload_then_fetch(client):
    created = _upload(client, name="cat.png", content=PNG_HEADER, content_type="image/png").json()
    r = client.get(f"/v1/file/{created['id']}")
    assert r.status_code == 200
    assert_baseline_headers(r)
    assert r.json()["file_name"] == "cat.png"
    assert r.json()["url"] == created["url"]


def test_upload_accepts_image_jpg_alias(client):
    assert _upload(client, content_type="image/jpg").status_code == 201


def test_object_metadata_is_ascii():
    uploaded_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    meta = object_metadata("café.jpg", "image/jpeg", uploaded_at)
    assert meta == {
        "content-type": "image/jpeg",
        "original-name": "caf%C3%A9.jpg",
        "upload-date": "2024-05-01T12:00:00+00:00",
    }


def test_upload_without_file(client, database):
    r = client.post("/v1/file")
    assert r.status_code == 400
    assert r.json() == {"error": "No file uploaded"}
    assert count(database, FileRecord) == 0


def test_upload_json_body_has_no_file(client):
    r = client.post("/v1/file", json={"file": "not really"})
    assert r.status_code == 400
    assert r.json() == {"error": "No file uploaded"}


def test_upload_rejects_other_types(client, store, database):
    r = _upload(client, name="notes.txt", content=b"hello", content_type="text/plain")
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid file type. Only JPEG, JPG, and PNG are allowed."}
    assert store.objects == {}
    assert count(database, FileRecord) == 0


def test_upload_too_large(client, store, database):
    data = PNG_HEADER + b"\0" * (6 * MIB)
    r = _upload(client, name="big.png", content=data, content_type="image/png")
    assert r.status_code == 400
    assert "Maximum size is 5 MB" in r.json()["error"]
    assert store.objects == {}
    assert count(database, FileRecord) == 0


def test_upload_at_size_limit(client):
    r = _upload(client, name="edge.png", content=b"\0" * (5 * MIB), content_type="image/png")
    assert r.status_code == 201


def test_upload_with_query_params(client, store, database):
    r = _upload(client, params={"overwrite": "true"})
    assert r.status_code == 400
    assert r.text == ""
    assert_baseline_headers(r)
    assert store.objects == {}
    assert count(database, FileRecord) == 0


def test_upload_with_extra_fields(client, store, database):
    r = _upload(client, data={"note": "hi"})
    assert r.status_code == 400
    assert r.text == ""
    assert count(database, FileRecord) == 0


def test_fetch_unknown_id(client):
    r = client.get(f"/v1/file/{uuid.uuid4()}")
    assert r.status_code == 404
    assert r.json() == {"error": "File not found"}
    assert_baseline_headers(r)


def test_fetch_malformed_id(client):
    r = client.get("/v1/file/not-a-uuid")
    assert r.status_code == 404


def test_fetch_with_query_or_body(client):
    created = _upload(client).json()
    assert client.get(f"/v1/file/{created['id']}", params={"a": "b"}).status_code == 400
    r = client.request("GET", f"/v1/file/{created['id']}", json={"a": "b"})
    assert r.status_code == 400
    assert r.text == ""


def test_download_url(client):
    created = _upload(client).json()
    r = client.get(f"/v1/file/{created['id']}/download")
    assert r.status_code == 200
    body = r.json()
    assert created["url"] in body["url"]
    assert body["expires_at"]


def test_download_unknown_id(client):
    r = client.get(f"/v1/file/{uuid.uuid4()}/download")
    assert r.status_code == 404


def test_delete(client, store, database):
    created = _upload(client).json()
    r = client.delete(f"/v1/file/{created['id']}")
    assert r.status_code == 204
    assert r.text == ""
    assert_baseline_headers(r)
    assert created["url"] not in store.objects
    assert count(database, FileRecord) == 0

    assert client.get(f"/v1/file/{created['id']}").status_code == 404
    assert client.delete(f"/v1/file/{created['id']}").status_code == 404


@pytest.mark.parametrize("file_id", [str(uuid.uuid4()), "not-a-uuid"])
def test_delete_unknown_never_touches_store(client, store, monkeypatch, file_id):
    calls = []
    monkeypatch.setattr(store, "delete", lambda key: calls.append(key))
    r = client.delete(f"/v1/file/{file_id}")
    assert r.status_code == 404
    assert calls == []


def test_delete_with_query_params(client, database):
    created = _upload(client).json()
    r = client.delete(f"/v1/file/{created['id']}", params={"force": "1"})
    assert r.status_code == 400
    assert r.text == ""
    assert count(database, FileRecord) == 1


@pytest.mark.parametrize("method", ["HEAD", "OPTIONS", "PATCH", "PUT"])
def test_unsupported_methods(client, method):
    created = _upload(client).json()
    for path in ("/v1/file", f"/v1/file/{created['id']}"):
        r = client.request(method, path)
        assert r.status_code == 405
        assert r.text == ""
        assert_baseline_headers(r)


def test_object_store_failure_on_upload(client, store, database, monkeypatch):
    def _fail(*args, **kwargs):
        raise ObjectStoreError("bucket unavailable")

    monkeypatch.setattr(store, "put", _fail)
    r = _upload(client)
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert_baseline_headers(r)
    assert count(database, FileRecord) == 0


def test_record_failure_after_put_leaves_orphan_blob(client, store, database, monkeypatch):
    def _fail(*args, **kwargs):
        raise OperationalError("INSERT INTO files", {}, Exception("gone away"))

    monkeypatch.setattr("webapp.files.service._create_record", _fail)
    r = _upload(client)
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert len(store.objects) == 1
    assert count(database, FileRecord) == 0


def test_object_store_failure_on_delete_keeps_record(client, store, database, monkeypatch):
    created = _upload(client).json()

    def _fail(key):
        raise ObjectStoreError("access denied")

    monkeypatch.setattr(store, "delete", _fail)
    r = client.delete(f"/v1/file/{created['id']}")
    assert r.status_code == 500
    assert count(database, FileRecord) == 1


def test_unknown_route(client):
    r = client.get("/v2/nothing")
    assert r.status_code == 404
    assert r.json() == {"error": "Not Found"}
    assert_baseline_headers(r)


def test_upload_fields_without_file(client, database):
    r = client.post("/v1/file", data={"note": "x"})
    assert r.status_code == 400
    assert r.json() == {"error": "No file uploaded"}
    assert count(database, FileRecord) == 0


def test_rejected_type_closes_upload():
    upload = UploadFile(io.BytesIO(b"hello"), filename="notes.txt", headers=Headers({"content-type": "text/plain"}))
    with pytest.raises(ApiError) as exc:
        read_image(upload, 5 * MIB)
    assert exc.value.status_code == 400
    assert upload.file.closed


def test_record_failure_on_delete_leaves_dangling_row(client, store, database, monkeypatch):
    created = _upload(client).json()

    def _fail(*args, **kwargs):
        raise OperationalError("DELETE FROM files", {}, Exception("gone away"))

    monkeypatch.setattr("webapp.files.service._destroy_record", _fail)
    r = client.delete(f"/v1/file/{created['id']}")
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert created["url"] not in store.objects
    assert count(database, FileRecord) == 1


@pytest.mark.parametrize("method", ["GET", "DELETE"])
def test_lookup_failure_is_internal_error(client, store, monkeypatch, method):
    created = _upload(client).json()
    calls = []
    monkeypatch.setattr(store, "delete", lambda key: calls.append(key))

    def _fail(*args, **kwargs):
        raise OperationalError("SELECT FROM files", {}, Exception("connection lost"))

    monkeypatch.setattr("webapp.files.api.get_file", _fail)
    r = client.request(method, f"/v1/file/{created['id']}")
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert_baseline_headers(r)
    assert calls == []
