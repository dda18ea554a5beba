"""
Shared fixtures: an application backed by in-memory SQLite, a temporary blob
directory and in-process fakes for the AI adapters.
"""
import os

os.environ.setdefault("ENABLE_FILE_LOGGING", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from app import create_app
from core.config import Settings
from core.dependencies import ServiceRegistry
from schemas.content import LearningContentData
from services.content_generation import build_study_pack
from services.identity import IdentityProvider
from services.pdf_generation import PDFRenderer
from services.storage import BlobStorage
from services.transcription import TranscriptionResult, split_into_chunks

TOKEN_SECRET = "test-secret"

SAMPLE_TRANSCRIPT = (
    "Photosynthesis converts light energy into chemical energy. "
    "Chlorophyll absorbs light and plants release oxygen as a byproduct. "
    "The Calvin cycle fixes carbon dioxide into sugars."
)


class FakeTranscriber:
    def __init__(self, text=SAMPLE_TRANSCRIPT, duration=90.0, error=None):
        self.text = text
        self.duration = duration
        self.error = error
        self.calls = []

    async def transcribe(self, audio, filename, model="whisper-1", language=None, prompt=None,
                         temperature=None, include_timestamps=False):
        self.calls.append({"filename": filename, "model": model, "size": len(audio)})
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, language=language or "en", duration=self.duration)

    async def stream_text(self, text):
        for chunk in split_into_chunks(text):
            yield chunk


class FakeContentGenerator:
    provider = "openai"

    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    async def generate(self, transcript, audio_title, duration, processed_at):
        self.calls += 1
        if self.error is not None:
            raise self.error
        flashcards = [
            {"id": 1, "question": "What does photosynthesis produce?", "answer": "Chemical energy and oxygen"},
            {"id": 2, "question": "Which pigment absorbs light?", "answer": "Chlorophyll"},
        ]
        concepts = [
            {"term": "Photosynthesis", "definition": "Conversion of light into chemical energy", "category": "Biology"},
            {"term": "Calvin cycle", "definition": "Carbon fixation into sugars", "category": "Biochemistry"},
        ]
        tone = {"title": "Photosynthesis", "sections": [{"heading": "Overview", "content": "Plants make **sugar**."}]}
        return LearningContentData.model_validate(
            {
                "audioTitle": audio_title,
                "duration": duration,
                "processedAt": processed_at,
                "summary": {"professional": tone, "friendly": tone, "eli5": tone},
                "flashcards": flashcards,
                "concepts": concepts,
                "studyPacks": build_study_pack(
                    transcript, audio_title, duration, processed_at, len(flashcards), len(concepts)
                ).model_dump(),
            }
        )


@pytest.fixture
def identity():
    return IdentityProvider(TOKEN_SECRET)


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def content_generator():
    return FakeContentGenerator()


@pytest.fixture
def storage(tmp_path):
    return BlobStorage(str(tmp_path / "blobs"))


@pytest.fixture
def services(identity, storage, transcriber, content_generator):
    return ServiceRegistry(
        identity=identity,
        storage=storage,
        transcriber=transcriber,
        content_generator=content_generator,
        pdf_renderer=PDFRenderer(),
    )


@pytest.fixture
def client(services):
    app_settings = Settings(database_url="sqlite+aiosqlite:///:memory:", enable_file_logging=False)
    app = create_app(app_settings, services=services)
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(identity, uid="user-1", email="user1@example.com"):
    token = identity.create_id_token(uid, email=email, name="Test User")
    return {"Authorization": f"Bearer {token}"}


def signup(client, identity, uid="user-1", email="user1@example.com"):
    token = identity.create_id_token(uid, email=email)
    response = client.post("/api/auth/signup", json={"idToken": token, "fullName": "Test User"})
    assert response.status_code == 200, response.text
    return auth_headers(identity, uid, email)


def upload(client, headers, content=b"\xff\xfb\x90\x00" * 2048, filename="lecture.mp3", mime_type="audio/mpeg"):
    return client.post("/api/audio/upload", headers=headers, files={"audio": (filename, content, mime_type)})


@pytest.fixture
def user_headers(client, identity):
    return signup(client, identity)

