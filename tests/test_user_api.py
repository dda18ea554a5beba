"""
Tests for profile endpoints, plan changes and account deletion.
"""
import os

from conftest import auth_headers, signup, upload


def test_profile_shape(client, user_headers):
    upload(client, user_headers)
    response = client.get("/api/user/user-1", headers=user_headers)
    assert response.status_code == 200

    profile = response.json()["data"]
    assert profile["id"] == "user-1"
    assert profile["email"] == "user1@example.com"
    assert profile["name"] == "Test User"
    assert profile["subscription"]["plan"] == "Free"
    assert profile["subscription"]["status"] == "Active"
    assert profile["usage"]["transcription"] == {"used": 0, "limit": 30}
    assert profile["usage"]["audioFiles"] == 1
    assert profile["usage"]["storage"]["limit"] == 1
    assert profile["stats"]["averageFileSize"] == 8192
    assert profile["stats"]["totalTranscriptions"] == 0


def test_other_users_profile_is_forbidden(client, identity, user_headers):
    signup(client, identity, uid="user-2", email="user2@example.com")
    assert client.get("/api/user/user-2", headers=user_headers).status_code == 403
    assert client.patch("/api/user/user-2", headers=user_headers, json={"full_name": "x"}).status_code == 403
    assert client.delete("/api/user/user-2", headers=user_headers).status_code == 403


def test_missing_profile_is_not_found(client, identity):
    headers = auth_headers(identity, uid="ghost", email="ghost@example.com")
    response = client.get("/api/user/ghost", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "User not found"


def test_update_profile(client, user_headers):
    response = client.patch("/api/user/user-1", headers=user_headers, json={"full_name": "Grace Hopper"})
    assert response.status_code == 200
    assert response.json()["data"]["full_name"] == "Grace Hopper"

    response = client.patch("/api/user/user-1", headers=user_headers, json={})
    assert response.status_code == 400
    assert response.json()["error"] == "No fields to update"


def test_plan_change(client, user_headers):
    response = client.post("/api/user/upgrade/plan", headers=user_headers, json={"newPlan": "starter"})
    assert response.status_code == 200
    assert response.json()["message"] == "Plan updated to starter successfully"
    assert response.json()["data"]["allowed_minutes"] == 600

    again = client.post("/api/user/upgrade/plan", headers=user_headers, json={"newPlan": "starter"})
    assert again.status_code == 400
    assert again.json()["error"] == "You are already on this plan"

    invalid = client.post("/api/user/upgrade/plan", headers=user_headers, json={"newPlan": "gold"})
    assert invalid.status_code == 400

    assert client.get("/api/usage", headers=user_headers).json()["data"]["plan"] == "starter"


def test_delete_account_removes_everything(client, identity, user_headers, storage):
    audio_id = upload(client, user_headers).json()["data"]["id"]
    transcript_id = client.post(
        "/api/audio/transcribe", headers=user_headers, json={"audio_file_id": audio_id}
    ).json()["data"]["id"]
    client.get(f"/api/content/{audio_id}", headers=user_headers)

    response = client.delete("/api/user/user-1", headers=user_headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"audio_files": 1, "blobs_deleted": 1}

    assert [f for _, _, files in os.walk(storage.root) for f in files] == []
    assert client.get("/api/user/user-1", headers=user_headers).status_code == 404
    assert client.get("/api/audio", headers=user_headers).json()["data"] == []
    assert client.get("/api/transcripts", headers=user_headers).json()["data"] == []
    assert client.get(f"/api/audio/{audio_id}", headers=user_headers).status_code == 404
    assert client.get(f"/api/transcripts/{transcript_id}", headers=user_headers).status_code == 404
    # The usage ledger is gone too, so the account can no longer spend
    assert client.get("/api/usage", headers=user_headers).status_code == 404


def test_profile_limits_follow_plan(client, user_headers):
    client.post("/api/user/upgrade/plan", headers=user_headers, json={"newPlan": "pro"})

    profile = client.get("/api/user/user-1", headers=user_headers).json()["data"]
    assert profile["subscription"]["plan"] == "Pro"
    # Minutes come from the usage ledger, storage from the plan table
    assert profile["usage"]["transcription"] == {"used": 0, "limit": 1500}
    assert profile["usage"]["storage"]["limit"] == 25
