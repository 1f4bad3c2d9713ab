"""
Sale Ingestion Listener: Reacts to purchases appended by the storefront.

Purchases land in the ``purchases`` collection:

    {
        "date": 1718000000000,              # ms epoch or ISO-8601
        "items": [{"productKey": "...", "quantity": 2, "location": "market"}],
        "screenshotIds": ["1234"],
        "customer": {"name": "...", "phone": "..."}
    }

Only purchases dated at or after listener startup are processed, so a
restart does not replay old sales. That is the only dedup: a purchase
redelivered while running would be processed again.

Line items and screenshots are handled one at a time; a failing item is
logged and skipped without aborting the rest of the purchase.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from stockbot.core.audit import AuditLog
from stockbot.core.config import Settings
from stockbot.core.exceptions import NotFoundError, StoreError
from stockbot.schemas.product import AMOUNT_FIELDS, now_ms, parse_amount
from stockbot.schemas.purchase import line_items
from stockbot.services.inventory import InventoryRepository
from stockbot.services.screenshots import ScreenshotRepository
from stockbot.store.document_store import DocumentStore
from stockbot.telegram.notifications import NotificationDispatcher, sale_caption

logger = logging.getLogger(__name__)

PURCHASES = "purchases"


def parse_timestamp(value: Any) -> Optional[int]:
    """Milliseconds since epoch from an int/float/numeric string or an ISO-8601 string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


class SaleIngestionListener:
    def __init__(
        self,
        store: DocumentStore,
        inventory: InventoryRepository,
        screenshots: ScreenshotRepository,
        notifier: NotificationDispatcher,
        settings: Settings,
        started_at: Optional[int] = None,
    ):
        self.store = store
        self.inventory = inventory
        self.screenshots = screenshots
        self.notifier = notifier
        self.settings = settings
        self.started_at = started_at if started_at is not None else now_ms()
        self.cursor = 0
        self._stopped = False
        self._wake: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _location_for(self, item: Dict[str, Any]) -> str:
        location = item.get("location") or self.settings.SALE_DEFAULT_LOCATION
        return location if location in AMOUNT_FIELDS else "market"

    async def _apply_item(self, key: str, item: Dict[str, Any], purchase: Dict[str, Any]) -> int:
        product_key = item.get("productKey") or item.get("id")
        if not product_key:
            raise NotFoundError("line item has no product key")
        quantity = max(parse_amount(item.get("quantity", 1)), 0)
        location = self._location_for(item)
        product, remaining = self.inventory.apply_sale(
            str(product_key), location, quantity, self.settings.SALE_QUANTITY_POLICY
        )
        caption = sale_caption(product, quantity, location, remaining, purchase, purchase_key=key)
        return await self.notifier.notify_sale(product, caption)

    async def handle_purchase(self, key: str, purchase: Dict[str, Any]) -> int:
        """
        Apply one purchase and notify admins.

        Returns:
            Number of messages delivered
        """
        purchase_time = parse_timestamp(purchase.get("date"))
        if purchase_time is None or purchase_time < self.started_at:
            logger.debug(f"[SALE] Skipping purchase {key}: dated before listener start")
            return 0

        items = line_items(purchase.get("items"))
        logger.info(f"[SALE] Processing purchase {key} with {len(items)} item(s)")
        delivered = 0

        for item in items:
            if not isinstance(item, dict):
                logger.error(f"[SALE] Skipping malformed item {item!r} of purchase {key}")
                continue
            try:
                delivered += await self._apply_item(key, item, purchase)
            except (NotFoundError, StoreError) as e:
                logger.error(f"[SALE] Skipping item {item.get('productKey') or item.get('id')} of purchase {key}: {e}")
            except Exception as e:
                logger.error(f"[SALE] Unexpected error on an item of purchase {key}: {e}", exc_info=True)

        for screenshot_id in line_items(purchase.get("screenshotIds")):
            try:
                record = self.screenshots.get(str(screenshot_id))
            except StoreError as e:
                logger.error(f"[SALE] Could not load screenshot {screenshot_id} for purchase {key}: {e}")
                continue
            if not record or not record.get("image"):
                logger.warning(f"[SALE] Screenshot {screenshot_id} referenced by purchase {key} not found")
                continue
            delivered += await self.notifier.forward_screenshot(str(screenshot_id), record["image"], key)

        AuditLog.log_action("sale", "purchase", key, changes={"items": len(items)})
        return delivered

    async def poll_once(self) -> int:
        """Process purchases appended since the last poll. Returns how many were seen."""
        try:
            rows = self.store.children_after(PURCHASES, self.cursor)
        except StoreError as e:
            logger.error(f"[SALE] Polling purchases failed: {e}")
            return 0

        for seq, key, purchase in rows:
            self.cursor = seq
            if not isinstance(purchase, dict):
                logger.error(f"[SALE] Skipping malformed purchase {key}")
                continue
            try:
                await self.handle_purchase(key, purchase)
            except Exception as e:
                logger.error(f"[SALE] Purchase {key} failed: {e}", exc_info=True)
        return len(rows)

    def _on_child_added(self, key: str, value: Dict[str, Any]) -> None:
        # push() may run on another thread (HTTP workers); hop onto our loop
        if self._loop and self._wake:
            self._loop.call_soon_threadsafe(self._wake.set)

    async def run(self) -> None:
        """Poll until stopped; an in-process push wakes the loop early."""
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self.store.on_child_added(PURCHASES, self._on_child_added)
        logger.info(f"[SALE] Listening for purchases (started_at={self.started_at})")

        while not self._stopped:
            await self.poll_once()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.settings.SALE_POLL_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

        logger.info("[SALE] Listener stopped")

    def stop(self) -> None:
        self._stopped = True
        if self._loop and self._wake:
            self._loop.call_soon_threadsafe(self._wake.set)
