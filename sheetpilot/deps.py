from __future__ import annotations

from openai import AsyncOpenAI

from sheetpilot.services.chat_service import ChatSession
from sheetpilot.services.confirmation_service import ConfirmationService

_chat_session: ChatSession | None = None
_confirmation_service: ConfirmationService | None = None
_openai_client: AsyncOpenAI | None = None


def set_dependencies(
    chat_session: ChatSession,
    confirmation_service: ConfirmationService,
    openai_client: AsyncOpenAI | None = None,
) -> None:
    global _chat_session, _confirmation_service, _openai_client
    _chat_session = chat_session
    _confirmation_service = confirmation_service
    _openai_client = openai_client


def get_chat_session() -> ChatSession:
    if _chat_session is None:
        raise RuntimeError("ChatSession not initialized")
    return _chat_session


def get_confirmation_service() -> ConfirmationService:
    if _confirmation_service is None:
        raise RuntimeError("ConfirmationService not initialized")
    return _confirmation_service


def get_openai_client() -> AsyncOpenAI:
    if _openai_client is None:
        raise RuntimeError("API key not found for provider 'openai'.")
    return _openai_client
