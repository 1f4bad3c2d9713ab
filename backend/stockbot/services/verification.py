"""
Login verification codes for the admin web front end.

One random 6-digit code per admin recipient, stored under
``verification_codes/<botCode>``. A new dispatch overwrites the previous
set; codes do not expire and are not consumed on use.
"""
import logging
import secrets
from typing import List, Tuple

from stockbot.schemas.product import now_ms
from stockbot.store.document_store import DocumentStore

logger = logging.getLogger(__name__)

VERIFICATION_CODES = "verification_codes"


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class VerificationCodes:
    def __init__(self, store: DocumentStore):
        self.store = store

    def save(self, bot_code: str, codes: List[str]) -> None:
        """Store the code set for ``bot_code``, replacing any earlier one."""
        self.store.set(f"{VERIFICATION_CODES}/{bot_code}", {
            "codes": codes,
            "sentAt": now_ms(),
        })
        logger.info(f"[LOGIN] Stored {len(codes)} code(s) for bot_code={bot_code}")

    def verify(self, bot_code: str, code: str) -> Tuple[bool, str]:
        data = self.store.get(f"{VERIFICATION_CODES}/{bot_code}")
        if not data or not data.get("codes"):
            return False, "No codes found for this bot code"
        if str(code).strip() in data["codes"]:
            return True, ""
        return False, "Invalid verification code"
