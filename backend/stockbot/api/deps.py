"""FastAPI dependencies: document store, login codes, bot gateway, settings.

Tests override these through ``app.dependency_overrides``.
"""
from fastapi import Depends

from stockbot.core.config import Settings, settings
from stockbot.services.verification import VerificationCodes
from stockbot.store.default import document_store
from stockbot.store.document_store import DocumentStore
from stockbot.telegram.bot import BotGateway


def get_store() -> DocumentStore:
    return document_store


def get_settings() -> Settings:
    return settings


def get_verification_codes(store: DocumentStore = Depends(get_store)) -> VerificationCodes:
    return VerificationCodes(store)


def get_bot_gateway() -> BotGateway:
    return BotGateway()
