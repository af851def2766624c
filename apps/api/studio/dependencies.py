"""FastAPI dependencies resolving the shared services attached to ``app.state``."""

from fastapi import Request

from .llm_backend import GenerationBackend
from .memory.context_memory import ContextMemoryStore
from .memory.documents import DocumentStore
from .storage import ImageStore
from .workflows.orchestration import RunRegistry


def get_backend(request: Request) -> GenerationBackend:
    return request.app.state.backend


def get_memory_store(request: Request) -> ContextMemoryStore:
    return request.app.state.memory_store


def get_image_store(request: Request) -> ImageStore:
    return request.app.state.image_store


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_run_registry(request: Request) -> RunRegistry:
    return request.app.state.run_registry
