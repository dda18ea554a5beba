"""
Service registry and FastAPI dependency getters.

External clients are built once by the application lifespan and stored on
``app.state.services``; handlers receive them through the getters below, so
tests can swap any of them for a fake.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from services.content_generation import ContentGenerator
    from services.identity import IdentityProvider
    from services.pdf_generation import PDFRenderer
    from services.storage import BlobStorage
    from services.transcription import Transcriber


@dataclass
class ServiceRegistry:
    identity: "IdentityProvider"
    storage: "BlobStorage"
    transcriber: "Transcriber"
    content_generator: "ContentGenerator"
    pdf_renderer: "PDFRenderer"


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


def get_identity_provider(request: Request) -> "IdentityProvider":
    return get_services(request).identity


def get_storage(request: Request) -> "BlobStorage":
    return get_services(request).storage


def get_transcriber(request: Request) -> "Transcriber":
    return get_services(request).transcriber


def get_content_generator(request: Request) -> "ContentGenerator":
    return get_services(request).content_generator


def get_pdf_renderer(request: Request) -> "PDFRenderer":
    return get_services(request).pdf_renderer
