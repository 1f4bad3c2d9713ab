"""
Notification Dispatcher: Every caption the bot sends is built here.

Product cards go out as photo + caption when the product has an image and
as plain text otherwise. Admin fan-out never stops at the first failed
recipient: each failure is logged and the next admin still gets notified.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from telegram import Bot, InlineKeyboardMarkup

from stockbot.schemas.product import Product
from stockbot.schemas.purchase import line_items
from stockbot.telegram.keyboards import product_actions

logger = logging.getLogger(__name__)

NA = "N/A"

HEADERS = {
    "created": "🆕 New item registered:",
    "updated": "✏️ Product updated:",
}


class Messenger(Protocol):
    """The two chat primitives the bot needs. Implemented over telegram.Bot and by test fakes."""

    async def send_message(self, chat_id, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
        ...

    async def send_photo(
        self, chat_id, photo: str, caption: str = None, reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> None:
        ...


class TelegramMessenger:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(self, chat_id, text, reply_markup=None):
        await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)

    async def send_photo(self, chat_id, photo, caption=None, reply_markup=None):
        await self.bot.send_photo(chat_id=chat_id, photo=photo, caption=caption, reply_markup=reply_markup)


def _or_na(value) -> str:
    return NA if value in (None, "") else str(value)


def product_lines(product: Product) -> List[str]:
    return [
        f"📝 Name: {_or_na(product.name)}",
        f"🔢 Code: {_or_na(product.code)}",
        f"💰 Cost price: {_or_na(product.cost_price)}",
        f"💵 Selling price: {_or_na(product.selling_price)}",
        f"📦 In store: {_or_na(product.amount_in_store)}",
        f"🏪 In market: {_or_na(product.amount_in_market)}",
    ]


def product_caption(product: Product, action: str = "listed", actor: str = None) -> str:
    lines = []
    if action in HEADERS:
        lines += [HEADERS[action], ""]
    lines += product_lines(product)
    if actor:
        label = "Edited by" if action == "updated" else "From"
        lines.append(f"👤 {label}: {actor}")
    return "\n".join(lines)


def edit_menu(product: Product) -> str:
    return "\n".join([
        "✏️ Choose the number of the field to change:",
        "",
        f"1) Name: {_or_na(product.name)}",
        f"2) Code: {_or_na(product.code)}",
        f"3) Cost price: {_or_na(product.cost_price)}",
        f"4) Selling price: {_or_na(product.selling_price)}",
        f"5) In store: {_or_na(product.amount_in_store)}",
        f"6) In market: {_or_na(product.amount_in_market)}",
        "7) 🖼️ Image",
        "8) ✅ Finish Editing",
    ])


def sale_caption(
    product: Product,
    quantity: int,
    location: str,
    remaining: int,
    purchase: Dict[str, Any],
    purchase_key: str = None,
) -> str:
    lines = [
        "🛒 New sale!",
        "",
        f"📝 Name: {_or_na(product.name)}",
        f"🔢 Code: {_or_na(product.code)}",
        f"🧮 Quantity sold: {quantity}",
        f"📍 Sold from: {location}",
        f"📦 Remaining: {max(remaining, 0)}",
        f"💵 Selling price: {_or_na(product.selling_price)}",
    ]
    customer = purchase.get("customer") or {}
    if isinstance(customer, dict) and (customer.get("name") or customer.get("phone")):
        lines.append(f"👤 Customer: {_or_na(customer.get('name'))} ({_or_na(customer.get('phone'))})")
    if purchase_key:
        lines.append(f"🧾 Order: {purchase_key}")
    return "\n".join(lines)


def purchase_summary(purchase_key: str, purchase: Dict[str, Any]) -> str:
    lines = [f"🧾 Order {purchase_key}", f"📅 {_or_na(purchase.get('date'))}"]
    for item in line_items(purchase.get("items")):
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("productKey") or item.get("id")
        lines.append(f"• {name} × {item.get('quantity', 1)}")
    screenshots = line_items(purchase.get("screenshotIds"))
    if screenshots:
        lines.append(f"🧾 Screenshots: {', '.join(str(s) for s in screenshots)}")
    return "\n".join(lines)


class NotificationDispatcher:
    def __init__(self, messenger: Messenger, admin_chat_ids: Iterable[str]):
        self.messenger = messenger
        self.admin_chat_ids = list(admin_chat_ids)

    async def send_card(self, chat_id, product: Product, caption: str, reply_markup=None) -> None:
        """Photo with caption when the product has an image, else plain text."""
        if product.image:
            await self.messenger.send_photo(chat_id, product.image, caption=caption, reply_markup=reply_markup)
        else:
            await self.messenger.send_message(chat_id, caption, reply_markup=reply_markup)

    async def _fan_out(self, label: str, send) -> int:
        delivered = 0
        for admin_id in self.admin_chat_ids:
            try:
                await send(admin_id)
                delivered += 1
            except Exception as e:
                logger.error(f"[NOTIFY] {label} to admin {admin_id} failed: {e}")
        return delivered

    async def notify_product(self, product: Product, action: str, actor: str = None) -> int:
        """Created/updated card with Edit and Add Stock buttons, to every admin."""
        caption = product_caption(product, action, actor)
        markup = product_actions(product.code)
        return await self._fan_out(
            f"{action} card for '{product.code}'",
            lambda admin_id: self.send_card(admin_id, product, caption, markup),
        )

    async def notify_sale(self, product: Product, caption: str) -> int:
        return await self._fan_out(
            f"sale of '{product.code}'",
            lambda admin_id: self.send_card(admin_id, product, caption),
        )

    async def forward_screenshot(self, screenshot_id: str, image: str, purchase_key: str = None) -> int:
        caption = f"🧾 Payment screenshot {screenshot_id}"
        if purchase_key:
            caption += f" for order {purchase_key}"
        return await self._fan_out(
            f"screenshot {screenshot_id}",
            lambda admin_id: self.messenger.send_photo(admin_id, image, caption=caption),
        )
