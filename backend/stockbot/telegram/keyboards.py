"""Inline keyboards and the callback payloads they carry."""
from telegram import InlineKeyboardButton, InlineKeyboardMarkup


class CallbackData:
    EDIT_PREFIX = "admin_edit_"
    ADD_STOCK_PREFIX = "admin_add_product_"
    ADD_TO_STORE = "add_to_store"
    ADD_TO_MARKET = "add_to_suq"
    TRANSFER = "transfer_stock"
    TRANSFER_STORE_TO_MARKET = "transfer_store_to_suq"
    TRANSFER_MARKET_TO_STORE = "transfer_suq_to_store"


# Telegram rejects callback_data longer than 64 bytes
CALLBACK_DATA_LIMIT = 64
MAX_CODE_BYTES = CALLBACK_DATA_LIMIT - max(len(CallbackData.EDIT_PREFIX), len(CallbackData.ADD_STOCK_PREFIX))


# location picked by each add button
ADD_LOCATIONS = {
    CallbackData.ADD_TO_STORE: "store",
    CallbackData.ADD_TO_MARKET: "market",
}

# (source, destination) for each transfer button
TRANSFER_DIRECTIONS = {
    CallbackData.TRANSFER_STORE_TO_MARKET: ("store", "market"),
    CallbackData.TRANSFER_MARKET_TO_STORE: ("market", "store"),
}


def product_actions(code: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✏️ Edit", callback_data=f"{CallbackData.EDIT_PREFIX}{code}"),
        InlineKeyboardButton("➕ Add Stock", callback_data=f"{CallbackData.ADD_STOCK_PREFIX}{code}"),
    ]])


def location_choice() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("📦 Add to Store", callback_data=CallbackData.ADD_TO_STORE),
            InlineKeyboardButton("🏪 Add to Market", callback_data=CallbackData.ADD_TO_MARKET),
        ],
        [InlineKeyboardButton("🔁 Transfer Stock", callback_data=CallbackData.TRANSFER)],
    ])


def transfer_choice() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("📦 ➡️ 🏪 Store to Market", callback_data=CallbackData.TRANSFER_STORE_TO_MARKET),
        InlineKeyboardButton("🏪 ➡️ 📦 Market to Store", callback_data=CallbackData.TRANSFER_MARKET_TO_STORE),
    ]])
