"""Chat users who pressed /start, stored under ``users/<chatId>``."""
from stockbot.schemas.product import now_ms
from stockbot.store.document_store import DocumentStore


def register_user(store: DocumentStore, chat_id, first_name: str) -> None:
    store.set(f"users/{chat_id}", {
        "firstName": first_name,
        "chatId": chat_id,
        "joinedAt": now_ms(),
    })
