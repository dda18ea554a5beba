"""
Tests for audio upload validation, listing, rename and deletion.
"""
import os

from conftest import auth_headers, signup, upload
from core.config import settings


def stored_blobs(storage):
    return [os.path.join(dirpath, f) for dirpath, _, files in os.walk(storage.root) for f in files]


def test_upload_requires_bearer_token(client):
    response = upload(client, headers={})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized"}


def test_upload_and_list(client, user_headers, storage):
    response = upload(client, user_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["filename"] == "lecture.mp3"
    assert data["size"] == 8192
    assert data["mimeType"] == "audio/mpeg"
    assert data["status"] == "uploaded"
    assert len(stored_blobs(storage)) == 1

    listing = client.get("/api/audio", headers=user_headers).json()["data"]
    assert [f["id"] for f in listing] == [data["id"]]
    assert listing[0]["file_path"].startswith("user-1/")


def test_upload_rejects_unlisted_mime_type(client, user_headers, storage):
    response = upload(client, user_headers, filename="notes.pdf", mime_type="application/pdf")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid file type. Please upload an audio file."
    assert stored_blobs(storage) == []


def test_upload_rejects_oversized_file_before_storage(client, user_headers, storage, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_size_mb", 1)
    response = upload(client, user_headers, content=b"\x00" * (1024 * 1024 + 1))
    assert response.status_code == 400
    assert response.json()["error"] == "File too large. Maximum size is 1MB."
    assert stored_blobs(storage) == []
    assert client.get("/api/audio", headers=user_headers).json()["data"] == []


def test_upload_just_over_fifty_megabytes_is_rejected(client, user_headers, storage):
    response = upload(client, user_headers, content=b"\x00" * (50 * 1024 * 1024 + 1))
    assert response.status_code == 400
    assert response.json()["error"] == "File too large. Maximum size is 50MB."
    assert stored_blobs(storage) == []


def test_upload_far_over_limit_is_rejected_before_the_route(client, user_headers, storage):
    # Content-Length above the request limit: answered by the size middleware
    response = upload(client, user_headers, content=b"\x00" * (60 * 1024 * 1024))
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "File too large. Maximum size is 50MB."}
    assert stored_blobs(storage) == []


def test_request_size_limit_on_other_paths_is_413(client, user_headers):
    response = client.post(
        "/api/transcripts",
        headers={**user_headers, "Content-Type": "application/json"},
        content=b"0" * (56 * 1024 * 1024),
    )
    assert response.status_code == 413
    assert response.json()["success"] is False


def test_upload_rejects_missing_and_empty_files(client, user_headers):
    response = client.post("/api/audio/upload", headers=user_headers, data={"other": "x"})
    assert response.status_code == 400
    assert response.json()["error"] == "No audio file provided"

    response = upload(client, user_headers, content=b"")
    assert response.status_code == 400


def test_audio_of_another_user_is_not_found(client, identity, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    other = signup(client, identity, uid="user-2", email="user2@example.com")

    response = client.get(f"/api/audio/{audio_id}", headers=other)
    assert response.status_code == 404
    assert response.json()["error"] == "Audio file not found or access denied"
    assert client.delete(f"/api/audio/{audio_id}", headers=other).status_code == 404


def test_rename_trims_and_validates(client, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]

    response = client.patch(f"/api/audio/{audio_id}", headers=user_headers, json={"original_filename": "  Week 1.mp3  "})
    assert response.status_code == 200
    assert response.json()["data"]["original_filename"] == "Week 1.mp3"

    response = client.patch(f"/api/audio/{audio_id}", headers=user_headers, json={"original_filename": "   "})
    assert response.status_code == 400
    response = client.patch(f"/api/audio/{audio_id}", headers=user_headers, json={"original_filename": "a" * 256})
    assert response.status_code == 400


def test_delete_removes_blob_and_derived_rows(client, user_headers, storage):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    client.post("/api/audio/transcribe", headers=user_headers, json={"audio_file_id": audio_id})
    client.get(f"/api/content/{audio_id}", headers=user_headers)

    response = client.delete(f"/api/audio/{audio_id}", headers=user_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Audio file deleted successfully"
    assert stored_blobs(storage) == []
    assert client.get(f"/api/audio/{audio_id}", headers=user_headers).status_code == 404
    assert client.get("/api/transcripts", headers=user_headers).json()["data"] == []
    assert client.get(f"/api/content/{audio_id}", headers=user_headers).status_code == 404


def test_expired_token_is_rejected(client, identity):
    from datetime import timedelta

    token = identity.create_id_token("user-1", email="user1@example.com", expires_delta=timedelta(seconds=-5))
    response = client.get("/api/audio", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token expired"


def test_token_signed_with_another_key_is_rejected(client):
    from services.identity import IdentityProvider

    forged = auth_headers(IdentityProvider("not-the-secret"))
    assert client.get("/api/audio", headers=forged).status_code == 401
