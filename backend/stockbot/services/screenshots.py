"""Payment screenshots, stored under ``Screenshot_id/<id>``."""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from stockbot.store.document_store import DocumentStore

logger = logging.getLogger(__name__)

SCREENSHOTS = "Screenshot_id"
SCREENSHOT_ID_PATTERN = re.compile(r"^[0-9]{4}$")


def is_valid_id(screenshot_id: str) -> bool:
    return bool(SCREENSHOT_ID_PATTERN.match((screenshot_id or "").strip()))


class ScreenshotRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, screenshot_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(f"{SCREENSHOTS}/{screenshot_id}")

    def exists(self, screenshot_id: str) -> bool:
        return self.get(screenshot_id) is not None

    def save(self, screenshot_id: str, image: str) -> bool:
        """
        Store a screenshot record. Returns False if the id was taken in the
        meantime; an existing record is never overwritten.
        """
        record = {
            "id": screenshot_id,
            "image": image,
            "date": datetime.now(timezone.utc).isoformat(),
        }
        created = self.store.create_if_absent(f"{SCREENSHOTS}/{screenshot_id}", record)
        if created:
            logger.info(f"[SCREENSHOT] Saved id={screenshot_id}")
        return created
