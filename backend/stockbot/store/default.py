"""Process-wide document store over the configured database."""
from stockbot.db.session import SessionLocal
from stockbot.store.document_store import DocumentStore

document_store = DocumentStore(SessionLocal)
