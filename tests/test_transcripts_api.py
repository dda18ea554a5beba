"""
Tests for transcript CRUD: one transcript per audio file, server-side word
counts and ownership checks.
"""
from conftest import signup, upload


def save(client, headers, audio_id, content="one two three", **extra):
    return client.post("/api/transcripts", headers=headers, json={"audio_file_id": audio_id, "content": content, **extra})


def test_create_then_update_same_row(client, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]

    created = save(client, user_headers, audio_id)
    assert created.status_code == 201
    assert created.json()["message"] == "Transcript created successfully"
    assert created.json()["data"]["word_count"] == 3

    updated = save(client, user_headers, audio_id, content="  four   five six seven  ", language="fr")
    assert updated.status_code == 200
    assert updated.json()["message"] == "Transcript updated successfully"
    assert updated.json()["data"]["id"] == created.json()["data"]["id"]
    assert updated.json()["data"]["word_count"] == 4
    assert updated.json()["data"]["language"] == "fr"

    audio = client.get(f"/api/audio/{audio_id}", headers=user_headers).json()["data"]
    assert audio["status"] == "completed"


def test_word_count_ignores_client_value(client, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    response = save(client, user_headers, audio_id, content="alpha beta", word_count=999)
    assert response.json()["data"]["word_count"] == 2


def test_list_filter_and_pagination(client, user_headers):
    ids = [upload(client, user_headers).json()["data"]["id"] for _ in range(3)]
    for audio_id in ids:
        save(client, user_headers, audio_id)

    page = client.get("/api/transcripts?limit=2&offset=0", headers=user_headers).json()
    assert len(page["data"]) == 2
    assert page["pagination"] == {"limit": 2, "offset": 0, "total": 3}

    filtered = client.get(f"/api/transcripts?audio_file_id={ids[1]}", headers=user_headers).json()
    assert [t["audio_file_id"] for t in filtered["data"]] == [ids[1]]

    assert client.get("/api/transcripts?limit=500", headers=user_headers).status_code == 400


def test_get_put_delete(client, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    transcript_id = save(client, user_headers, audio_id).json()["data"]["id"]

    fetched = client.get(f"/api/transcripts/{transcript_id}", headers=user_headers)
    assert fetched.json()["data"]["content"] == "one two three"

    updated = client.put(f"/api/transcripts/{transcript_id}", headers=user_headers, json={"content": "just two"})
    assert updated.json()["data"]["word_count"] == 2

    empty = client.put(f"/api/transcripts/{transcript_id}", headers=user_headers, json={})
    assert empty.status_code == 400
    assert empty.json()["error"] == "No fields to update"

    deleted = client.delete(f"/api/transcripts/{transcript_id}", headers=user_headers)
    assert deleted.json() == {"success": True, "message": "Transcript deleted successfully"}
    assert client.get(f"/api/transcripts/{transcript_id}", headers=user_headers).status_code == 404


def test_transcripts_are_private(client, identity, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    transcript_id = save(client, user_headers, audio_id).json()["data"]["id"]
    other = signup(client, identity, uid="user-2", email="user2@example.com")

    assert client.get(f"/api/transcripts/{transcript_id}", headers=other).status_code == 404
    assert client.get("/api/transcripts", headers=other).json()["data"] == []
    # Cannot attach a transcript to someone else's audio
    assert save(client, other, audio_id).status_code == 404


def test_empty_content_is_rejected(client, user_headers):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    assert save(client, user_headers, audio_id, content="").status_code == 400
