"""
Conversation engine: registration, edit, add-stock/transfer and screenshot
flows driven the way Telegram drives them, one event at a time.
"""
import pytest

from conftest import ADMIN, STAFF, STRANGER, run
from stockbot.core.exceptions import StoreError, UnauthorizedEvent, ValidationError
from stockbot.services.inventory import STOCK_LOG
from stockbot.telegram.engine import ADMIN_ONLY, GENERIC_FAILURE, parse_code, parse_count
from stockbot.telegram.keyboards import CALLBACK_DATA_LIMIT, MAX_CODE_BYTES, CallbackData
from stockbot.telegram.sessions import FlowKind, Step


def say(engine, chat_id, *texts):
    for text in texts:
        run(engine.handle_text(chat_id, text))


def buttons(message):
    return [b.callback_data for row in message["reply_markup"].inline_keyboard for b in row]


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("event", [
    lambda engine: engine.handle_command(STRANGER, "/store"),
    lambda engine: engine.handle_text(STRANGER, "hello"),
    lambda engine: engine.handle_photo(STRANGER, "file-x"),
    lambda engine: engine.handle_callback(STRANGER, "admin_edit_S-1"),
])
def test_unknown_chat_gets_nothing(engine, messenger, event):
    with pytest.raises(UnauthorizedEvent):
        run(event(engine))

    assert messenger.sent == []
    assert len(engine.sessions) == 0


def test_text_without_flow_is_ignored(engine, messenger):
    assert run(engine.handle_text(STAFF, "hello")) is False
    assert messenger.sent == []


def test_start_registers_user(engine, store, messenger):
    run(engine.handle_command(STAFF, "/start", first_name="Dana"))
    user = store.get(f"users/{STAFF}")
    assert user["firstName"] == "Dana"
    assert "Hello Dana" in messenger.last_text(STAFF)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def test_registration_creates_product_and_notifies_admin(engine, inventory, messenger):
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "C-7", "skip", "Skip", "5", "3")

    key, product = inventory.find_by_code("C-7")
    assert product.name == "Chair"
    assert product.image == "file-chair"
    assert product.amount_in_store == "5"
    assert product.amount_in_market == "3"
    assert product.cost_price is None
    assert product.selling_price is None
    assert product.created_by == STAFF

    admin_cards = messenger.to(ADMIN, "photo")
    assert len(admin_cards) == 1
    assert admin_cards[0]["photo"] == "file-chair"
    assert "New item registered" in admin_cards[0]["caption"]
    assert buttons(admin_cards[0]) == [
        f"{CallbackData.EDIT_PREFIX}C-7",
        f"{CallbackData.ADD_STOCK_PREFIX}C-7",
    ]

    assert engine.sessions.get(STAFF) is None
    assert messenger.last_text(STAFF) == "✅ Item registered and sent to admin."


def test_registration_rejects_bad_amount_and_stays(engine, messenger):
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "C-7", "10", "20", "lots")

    session = engine.sessions.get(STAFF)
    assert session.step == Step.AWAITING_STORE_AMOUNT
    assert "whole number" in messenger.last_text(STAFF)


def test_registration_rejects_superscript_amount(engine, messenger):
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "C-7", "skip", "skip", "²")

    assert engine.sessions.get(STAFF).step == Step.AWAITING_STORE_AMOUNT
    assert messenger.last_text(STAFF) == "❌ Enter a whole number (0 or more)."


def test_registration_rejects_code_too_long_for_buttons(engine, inventory, messenger):
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "X" * 50)

    session = engine.sessions.get(STAFF)
    assert session.step == Step.AWAITING_CODE
    assert "too long" in messenger.last_text(STAFF)

    code = "X" * MAX_CODE_BYTES
    say(engine, STAFF, code, "skip", "skip", "1", "1")
    assert inventory.find_by_code(code) is not None
    for data in buttons(messenger.to(ADMIN, "photo")[0]):
        assert len(data.encode("utf-8")) <= CALLBACK_DATA_LIMIT


def test_registration_text_before_photo_is_not_consumed(engine):
    run(engine.handle_command(STAFF, "/store"))
    assert run(engine.handle_text(STAFF, "Chair")) is False
    assert engine.sessions.get(STAFF).step == Step.AWAITING_IMAGE


def test_registration_store_failure_clears_session(engine, inventory, messenger, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError("down")

    monkeypatch.setattr(inventory, "create", broken)
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "C-7", "skip", "skip", "skip", "skip")

    assert engine.sessions.get(STAFF) is None
    assert messenger.last_text(STAFF) == GENERIC_FAILURE
    assert messenger.to(ADMIN) == []


def test_admin_fan_out_survives_one_failure(engine, notifier, messenger):
    notifier.admin_chat_ids = [ADMIN, "101"]
    messenger.fail_for.add(ADMIN)

    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_photo(STAFF, "file-chair"))
    say(engine, STAFF, "Chair", "C-7", "skip", "skip", "1", "1")

    assert len(messenger.to("101", "photo")) == 1
    assert messenger.last_text(STAFF) == "✅ Item registered and sent to admin."


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

def test_edit_unknown_code_ends_flow(engine, messenger, sofa):
    run(engine.handle_command(STAFF, "/edit"))
    say(engine, STAFF, "NOPE")

    assert engine.sessions.get(STAFF) is None
    assert "not found" in messenger.last_text(STAFF)


def test_edit_loop_updates_selected_fields(engine, inventory, messenger, sofa):
    run(engine.handle_command(STAFF, "/edit"))
    say(engine, STAFF, "S-1")

    session = engine.sessions.get(STAFF)
    assert session.step == Step.MENU
    assert session.product_key == sofa
    assert messenger.to(STAFF, "photo")[-1]["caption"] == "7) 🖼️ Current image"

    say(engine, STAFF, "9")
    assert messenger.last_text(STAFF) == "❌ Invalid choice. Type a number from 1 to 8."
    assert engine.sessions.get(STAFF).step == Step.MENU

    say(engine, STAFF, "3", "120")
    say(engine, STAFF, "5", "abc")
    assert engine.sessions.get(STAFF).step == Step.EDIT_STORE_AMOUNT
    say(engine, STAFF, "12")

    say(engine, STAFF, "7")
    run(engine.handle_photo(STAFF, "file-sofa-2"))
    assert engine.sessions.get(STAFF).step == Step.MENU

    say(engine, STAFF, "8")

    product = inventory.get(sofa)
    assert product.cost_price == "120"
    assert product.amount_in_store == "12"
    assert product.image == "file-sofa-2"
    assert product.selling_price == "150"
    assert product.updated_at is not None

    assert engine.sessions.get(STAFF) is None
    assert messenger.last_text(STAFF) == "✅ Product updated and sent to admin."
    card = messenger.to(ADMIN, "photo")[-1]
    assert "Product updated" in card["caption"]
    assert len(buttons(card)) == 2


def test_edit_lookup_store_failure_keeps_session(engine, inventory, messenger, monkeypatch):
    def broken(code):
        raise StoreError("down")

    monkeypatch.setattr(inventory, "find_by_code", broken)
    run(engine.handle_command(STAFF, "/edit"))
    say(engine, STAFF, "S-1")

    assert messenger.last_text(STAFF) == GENERIC_FAILURE
    assert engine.sessions.get(STAFF).step == Step.AWAITING_CODE


def test_edit_button_opens_menu_for_admin(engine, messenger, sofa):
    answer = run(engine.handle_callback(ADMIN, f"{CallbackData.EDIT_PREFIX}S-1"))

    assert answer.text is None
    session = engine.sessions.get(ADMIN)
    assert session.flow == FlowKind.EDIT
    assert session.step == Step.MENU
    assert "Choose the number" in messenger.to(ADMIN, "message")[-1]["text"]


# ---------------------------------------------------------------------------
# Add stock and transfer
# ---------------------------------------------------------------------------

def test_card_buttons_are_admin_only(engine, messenger, sofa):
    answer = run(engine.handle_callback(STAFF, f"{CallbackData.ADD_STOCK_PREFIX}S-1"))
    assert answer.text == ADMIN_ONLY
    assert answer.show_alert is True
    assert engine.sessions.get(STAFF) is None


def test_card_button_for_missing_product(engine):
    answer = run(engine.handle_callback(ADMIN, f"{CallbackData.ADD_STOCK_PREFIX}GONE"))
    assert answer.text == "❌ Product not found."
    assert answer.show_alert is True


def test_stale_location_button_expires(engine):
    answer = run(engine.handle_callback(ADMIN, CallbackData.ADD_TO_STORE))
    assert answer.show_alert is True
    assert "expired" in answer.text


def test_add_stock_to_market(engine, inventory, store, messenger, sofa):
    run(engine.handle_callback(ADMIN, f"{CallbackData.ADD_STOCK_PREFIX}S-1"))
    assert buttons(messenger.to(ADMIN)[-1]) == [
        CallbackData.ADD_TO_STORE, CallbackData.ADD_TO_MARKET, CallbackData.TRANSFER,
    ]

    run(engine.handle_callback(ADMIN, CallbackData.ADD_TO_MARKET))
    say(engine, ADMIN, "0")
    assert "positive" in messenger.last_text(ADMIN)
    say(engine, ADMIN, "3")

    assert inventory.get(sofa).amount("market") == 5
    assert "New amount: 5" in messenger.last_text(ADMIN)
    assert engine.sessions.get(ADMIN) is None
    assert len(store.children(STOCK_LOG)) == 1


def test_transfer_rejects_overdraw_then_moves(engine, inventory, store, messenger):
    key = inventory.create({"name": "Table", "code": "T-1", "amountInStore": "10"}, created_by=ADMIN)

    run(engine.handle_callback(ADMIN, f"{CallbackData.ADD_STOCK_PREFIX}T-1"))
    run(engine.handle_callback(ADMIN, CallbackData.TRANSFER))
    run(engine.handle_callback(ADMIN, CallbackData.TRANSFER_STORE_TO_MARKET))
    assert "available: 10" in messenger.last_text(ADMIN)

    say(engine, ADMIN, "15")
    assert "Not enough stock" in messenger.last_text(ADMIN)
    assert engine.sessions.get(ADMIN).step == Step.AWAITING_TRANSFER_AMOUNT
    assert inventory.get(key).amount("store") == 10

    say(engine, ADMIN, "4")
    product = inventory.get(key)
    assert product.amount("store") == 6
    assert product.amount("market") == 4
    assert engine.sessions.get(ADMIN) is None
    assert store.children(STOCK_LOG) == []


def test_edit_rejects_code_too_long_for_buttons(engine, inventory, messenger, sofa):
    run(engine.handle_command(STAFF, "/edit"))
    say(engine, STAFF, "S-1", "2", "é" * 24)

    assert engine.sessions.get(STAFF).step == Step.EDIT_CODE
    assert "too long" in messenger.last_text(STAFF)

    say(engine, STAFF, "S-2", "8")
    assert inventory.get(sofa).code == "S-2"


# ---------------------------------------------------------------------------
# Screenshots
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("bad_id", ["123", "12345", "12a4", "abcd", "١٢٣٤"])
def test_screenshot_id_must_be_four_digits(engine, messenger, bad_id):
    run(engine.handle_command(STAFF, "/screenshot"))
    say(engine, STAFF, bad_id)
    assert messenger.last_text(STAFF) == "❌ The id must be exactly 4 digits. Try again."
    assert engine.sessions.get(STAFF).step == Step.AWAITING_ID


def test_screenshot_saved_once(engine, screenshots, messenger):
    run(engine.handle_command(STAFF, "/screenshot"))
    say(engine, STAFF, "1234")
    say(engine, STAFF, "not a photo")
    assert messenger.last_text(STAFF) == "📸 Please send the screenshot as a photo, or /cancel."

    run(engine.handle_photo(STAFF, "file-receipt"))
    assert messenger.last_text(STAFF) == "✅ Screenshot 1234 saved."
    assert screenshots.get("1234")["image"] == "file-receipt"
    assert engine.sessions.get(STAFF) is None

    run(engine.handle_command(STAFF, "/screenshot"))
    say(engine, STAFF, "1234")
    assert messenger.last_text(STAFF) == "⚠️ This id is already used. Enter a different 4-digit id."


def test_screenshot_id_reserved_by_another_chat(engine, screenshots, messenger):
    run(engine.handle_command(STAFF, "/screenshot"))
    say(engine, STAFF, "4321")

    run(engine.handle_command(ADMIN, "/screenshot"))
    say(engine, ADMIN, "4321")
    assert messenger.last_text(ADMIN) == "⚠️ This id is already used. Enter a different 4-digit id."

    run(engine.handle_photo(STAFF, "file-a"))
    assert screenshots.get("4321")["image"] == "file-a"


def test_screenshot_lost_race_asks_again(engine, screenshots, messenger):
    run(engine.handle_command(STAFF, "/screenshot"))
    say(engine, STAFF, "5555")
    screenshots.save("5555", "file-other")

    run(engine.handle_photo(STAFF, "file-mine"))
    assert engine.sessions.get(STAFF).step == Step.AWAITING_ID
    assert screenshots.get("5555")["image"] == "file-other"


# ---------------------------------------------------------------------------
# Admin commands and cancel
# ---------------------------------------------------------------------------

def test_cancel(engine, messenger):
    run(engine.handle_command(STAFF, "/cancel"))
    assert messenger.last_text(STAFF) == "ℹ️ Nothing to cancel."

    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_command(STAFF, "/cancel"))
    assert engine.sessions.get(STAFF) is None
    assert messenger.last_text(STAFF).startswith("🚫 Operation cancelled")


def test_new_command_replaces_flow(engine):
    run(engine.handle_command(STAFF, "/store"))
    run(engine.handle_command(STAFF, "/screenshot"))
    assert engine.sessions.get(STAFF).flow == FlowKind.SCREENSHOT


def test_list_is_admin_only(engine, messenger, sofa):
    run(engine.handle_command(STAFF, "/list"))
    assert messenger.last_text(STAFF) == "❌ Only the admin can use this command."

    run(engine.handle_command(ADMIN, "/list"))
    card = messenger.to(ADMIN, "photo")[-1]
    assert "Sofa" in card["caption"]
    assert len(buttons(card)) == 2


def test_list_without_products(engine, messenger):
    run(engine.handle_command(ADMIN, "/list"))
    assert messenger.last_text(ADMIN) == "📦 No products found."


def test_byorder_lists_newest_first(engine, store, messenger, config):
    run(engine.handle_command(ADMIN, "/byorder"))
    assert messenger.last_text(ADMIN) == "📭 No orders yet."

    config.BYORDER_LIMIT = 2
    keys = [store.push("purchases", {"date": n, "items": [{"name": f"Item {n}", "quantity": 1}]}) for n in range(3)]
    run(engine.handle_command(ADMIN, "/byorder"))

    summaries = [m["text"] for m in messenger.to(ADMIN)][-2:]
    assert summaries[0].startswith(f"🧾 Order {keys[2]}")
    assert summaries[1].startswith(f"🧾 Order {keys[1]}")


@pytest.mark.parametrize("text, allow_zero, expected", [("0", True, 0), (" 12 ", True, 12), ("3", False, 3)])
def test_parse_count(text, allow_zero, expected):
    assert parse_count(text, allow_zero=allow_zero) == expected


@pytest.mark.parametrize("text, allow_zero", [("²", True), ("-1", True), ("1.5", True), ("0", False), ("", True)])
def test_parse_count_rejects(text, allow_zero):
    with pytest.raises(ValidationError):
        parse_count(text, allow_zero=allow_zero)


def test_parse_code_limit_counts_bytes():
    assert parse_code(" " + "a" * MAX_CODE_BYTES + " ") == "a" * MAX_CODE_BYTES
    with pytest.raises(ValidationError):
        parse_code("ж" * (MAX_CODE_BYTES // 2 + 1))
