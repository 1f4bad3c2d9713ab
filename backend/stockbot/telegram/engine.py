"""
Conversation Engine: One dispatcher for every multi-step chat flow.

Each chat has at most one session. An inbound event is routed once, by the
session's flow, to exactly one handler; handlers advance ``session.step``
and send replies through the messenger.

Error policy:
- ValidationError: reply and stay on the current step
- NotFoundError: reply and end the flow
- StoreError: generic failure reply; the session is cleared when the
  failure happened at a terminal step and kept otherwise
- chats outside the allow-list: UnauthorizedEvent, before any state change
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from stockbot.core.audit import AuditLog
from stockbot.core.config import Settings
from stockbot.core.exceptions import NotFoundError, StoreError, UnauthorizedEvent, ValidationError
from stockbot.schemas.product import Product
from stockbot.services.inventory import InventoryRepository
from stockbot.services.screenshots import ScreenshotRepository, is_valid_id
from stockbot.services.users import register_user
from stockbot.store.document_store import DocumentStore
from stockbot.telegram.keyboards import (
    ADD_LOCATIONS,
    MAX_CODE_BYTES,
    TRANSFER_DIRECTIONS,
    CallbackData,
    location_choice,
    product_actions,
    transfer_choice,
)
from stockbot.telegram.notifications import (
    NotificationDispatcher,
    edit_menu,
    product_caption,
    purchase_summary,
)
from stockbot.telegram.sessions import FlowKind, Session, SessionStore, Step

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "⚠️ Something went wrong. Please try again."
ADMIN_ONLY = "❌ Only admin can use this."
PURCHASES = "purchases"

LOCATION_LABELS = {"store": "📦 Store", "market": "🏪 Market"}
DIGITS = re.compile(r"[0-9]+")

# Registration: step -> (document field, next step, prompt for next step)
REGISTRATION_STEPS = {
    Step.AWAITING_NAME: ("name", Step.AWAITING_CODE, "🔢 Now send the product code."),
    Step.AWAITING_CODE: ("code", Step.AWAITING_COST, "💰 Now the cost price, or type Skip."),
    Step.AWAITING_COST: ("costPrice", Step.AWAITING_SELLING, "💵 Now the selling price, or type Skip."),
    Step.AWAITING_SELLING: ("sellingPrice", Step.AWAITING_STORE_AMOUNT, "📦 How many are in the store? Or type Skip."),
    Step.AWAITING_STORE_AMOUNT: ("amountInStore", Step.AWAITING_MARKET_AMOUNT, "🏪 How many are in the market? Or type Skip."),
    Step.AWAITING_MARKET_AMOUNT: ("amountInMarket", None, None),
}
SKIPPABLE_STEPS = {Step.AWAITING_COST, Step.AWAITING_SELLING, Step.AWAITING_STORE_AMOUNT, Step.AWAITING_MARKET_AMOUNT}
REGISTRATION_AMOUNT_STEPS = {Step.AWAITING_STORE_AMOUNT, Step.AWAITING_MARKET_AMOUNT}

# Edit menu: choice -> (step, document field, label)
EDIT_CHOICES = {
    "1": (Step.EDIT_NAME, "name", "Name"),
    "2": (Step.EDIT_CODE, "code", "Code"),
    "3": (Step.EDIT_COST, "costPrice", "Cost price"),
    "4": (Step.EDIT_SELLING, "sellingPrice", "Selling price"),
    "5": (Step.EDIT_STORE_AMOUNT, "amountInStore", "In store"),
    "6": (Step.EDIT_MARKET_AMOUNT, "amountInMarket", "In market"),
    "7": (Step.EDIT_IMAGE, "image", "Image"),
}
FINISH_EDIT = "8"
EDIT_STEP_FIELDS = {step: field for step, field, _ in EDIT_CHOICES.values()}
EDIT_AMOUNT_STEPS = {Step.EDIT_STORE_AMOUNT, Step.EDIT_MARKET_AMOUNT}
EDITABLE_FIELDS = [field for _, field, _ in EDIT_CHOICES.values()]


@dataclass
class CallbackAnswer:
    """What to show on the tapped button (toast, or alert when show_alert)."""
    text: Optional[str] = None
    show_alert: bool = False


def is_skip(text: str) -> bool:
    return text.strip().lower() == "skip"


def parse_count(text: str, allow_zero: bool = True) -> int:
    """Whole-number input for amounts. Raises ValidationError otherwise."""
    value = text.strip()
    if not DIGITS.fullmatch(value) or (not allow_zero and int(value) == 0):
        if allow_zero:
            raise ValidationError("❌ Enter a whole number (0 or more).")
        raise ValidationError("❌ Enter a positive whole number.")
    return int(value)


def parse_code(text: str) -> str:
    """Product code, short enough to fit in the card buttons' callback data."""
    code = text.strip()
    if len(code.encode("utf-8")) > MAX_CODE_BYTES:
        raise ValidationError(f"❌ The code is too long (max {MAX_CODE_BYTES} bytes). Send a shorter code.")
    return code


class ConversationEngine:
    def __init__(
        self,
        sessions: SessionStore,
        store: DocumentStore,
        inventory: InventoryRepository,
        screenshots: ScreenshotRepository,
        notifier: NotificationDispatcher,
        settings: Settings,
    ):
        self.sessions = sessions
        self.store = store
        self.inventory = inventory
        self.screenshots = screenshots
        self.notifier = notifier
        self.messenger = notifier.messenger
        self.settings = settings

        self._commands = {
            "start": self._cmd_start,
            "store": self._cmd_store,
            "edit": self._cmd_edit,
            "screenshot": self._cmd_screenshot,
            "list": self._cmd_list,
            "byorder": self._cmd_byorder,
            "cancel": self._cmd_cancel,
        }
        self._text_handlers = {
            FlowKind.REGISTER: self._registration_text,
            FlowKind.EDIT: self._edit_text,
            FlowKind.ADD_STOCK: self._add_stock_text,
            FlowKind.SCREENSHOT: self._screenshot_text,
        }
        self._photo_handlers = {
            FlowKind.REGISTER: self._registration_photo,
            FlowKind.EDIT: self._edit_photo,
            FlowKind.SCREENSHOT: self._screenshot_photo,
        }

    # ==========================================================================
    # ENTRY POINTS
    # ==========================================================================

    def _authorize(self, chat_id, event: str) -> None:
        if not self.settings.is_allowed(chat_id):
            AuditLog.log_access_denied(chat_id, event)
            raise UnauthorizedEvent(f"chat {chat_id} is not allow-listed")

    async def reply(self, chat_id, text: str, reply_markup=None) -> None:
        await self.messenger.send_message(chat_id, text, reply_markup=reply_markup)

    async def handle_command(self, chat_id, command: str, actor: str = None, first_name: str = None) -> bool:
        """Run a slash command. Returns False for commands the bot does not know."""
        command = command.lstrip("/").split("@")[0].lower()
        self._authorize(chat_id, f"/{command}")
        handler = self._commands.get(command)
        if handler is None:
            return False

        logger.info(f"[FLOW] chat_id={chat_id} command=/{command}")
        try:
            await handler(chat_id, actor=actor, first_name=first_name)
        except StoreError:
            await self.reply(chat_id, GENERIC_FAILURE)
        return True

    async def handle_text(self, chat_id, text: str, actor: str = None) -> bool:
        """Feed a plain text message to the chat's active flow."""
        self._authorize(chat_id, "text")
        session = self.sessions.get(chat_id)
        if session is None:
            return False
        return await self._dispatch(chat_id, session, self._text_handlers.get(session.flow), text, actor)

    async def handle_photo(self, chat_id, file_id: str, actor: str = None) -> bool:
        """Feed a photo (largest size file id) to the chat's active flow."""
        self._authorize(chat_id, "photo")
        session = self.sessions.get(chat_id)
        if session is None:
            return False
        return await self._dispatch(chat_id, session, self._photo_handlers.get(session.flow), file_id, actor)

    async def _dispatch(self, chat_id, session: Session, handler, payload: str, actor) -> bool:
        if handler is None:
            return False
        logger.info(f"[FLOW] chat_id={chat_id} flow={session.flow} step={session.step}")
        try:
            return await handler(chat_id, session, payload, actor)
        except ValidationError as e:
            await self.reply(chat_id, e.message)
        except NotFoundError as e:
            self.sessions.clear(chat_id)
            await self.reply(chat_id, e.message)
        except StoreError:
            await self.reply(chat_id, GENERIC_FAILURE)
        return True

    async def _terminal_store_failure(self, chat_id) -> None:
        self.sessions.clear(chat_id)
        await self.reply(chat_id, GENERIC_FAILURE)

    # ==========================================================================
    # COMMANDS
    # ==========================================================================

    async def _cmd_start(self, chat_id, actor=None, first_name=None):
        name = first_name or "there"
        register_user(self.store, chat_id, name)
        await self.reply(chat_id, f"👋 Hello {name}!\nYou're now connected to the bot.")

    async def _cmd_store(self, chat_id, **_):
        self.sessions.start(chat_id, FlowKind.REGISTER, Step.AWAITING_IMAGE)
        await self.reply(chat_id, "📸 Send a photo of the item.")

    async def _cmd_edit(self, chat_id, **_):
        self.sessions.start(chat_id, FlowKind.EDIT, Step.AWAITING_CODE)
        await self.reply(chat_id, "🔎 Enter the product code.")

    async def _cmd_screenshot(self, chat_id, **_):
        self.sessions.start(chat_id, FlowKind.SCREENSHOT, Step.AWAITING_ID)
        await self.reply(chat_id, "🔢 Enter a 4-digit id for this payment screenshot.")

    async def _cmd_cancel(self, chat_id, **_):
        if self.sessions.clear(chat_id):
            await self.reply(chat_id, "🚫 Operation cancelled. You can now enter a new command.")
        else:
            await self.reply(chat_id, "ℹ️ Nothing to cancel.")

    async def _cmd_list(self, chat_id, **_):
        if not self.settings.is_admin(chat_id):
            await self.reply(chat_id, "❌ Only the admin can use this command.")
            return
        products = self.inventory.list_all()
        if not products:
            await self.reply(chat_id, "📦 No products found.")
            return
        for _, product in products:
            await self.notifier.send_card(
                chat_id, product, product_caption(product), product_actions(product.code)
            )

    async def _cmd_byorder(self, chat_id, **_):
        if not self.settings.is_admin(chat_id):
            await self.reply(chat_id, "❌ Only the admin can use this command.")
            return
        purchases = self.store.children(PURCHASES)[-self.settings.BYORDER_LIMIT:]
        if not purchases:
            await self.reply(chat_id, "📭 No orders yet.")
            return
        for key, purchase in reversed(purchases):
            await self.reply(chat_id, purchase_summary(key, purchase))

    # ==========================================================================
    # REGISTRATION FLOW (/store)
    # ==========================================================================

    async def _registration_photo(self, chat_id, session: Session, file_id: str, actor) -> bool:
        if session.step != Step.AWAITING_IMAGE:
            return False
        session.data["image"] = file_id
        session.step = Step.AWAITING_NAME
        await self.reply(chat_id, "📝 Now send the item name.")
        return True

    async def _registration_text(self, chat_id, session: Session, text: str, actor) -> bool:
        if session.step not in REGISTRATION_STEPS:
            return False
        field, next_step, prompt = REGISTRATION_STEPS[session.step]

        if session.step in SKIPPABLE_STEPS and is_skip(text):
            value = None
        elif session.step in REGISTRATION_AMOUNT_STEPS:
            value = str(parse_count(text))
        elif session.step == Step.AWAITING_CODE:
            value = parse_code(text)
        else:
            value = text.strip()
        session.data[field] = value

        if next_step is None:
            await self._finish_registration(chat_id, session, actor)
            return True
        session.step = next_step
        await self.reply(chat_id, prompt)
        return True

    async def _finish_registration(self, chat_id, session: Session, actor) -> None:
        try:
            self.inventory.create(session.data, created_by=str(chat_id))
        except StoreError:
            await self._terminal_store_failure(chat_id)
            return
        self.sessions.clear(chat_id)

        product = Product.from_document(session.data)
        await self.notifier.notify_product(product, "created", actor)
        await self.reply(chat_id, "✅ Item registered and sent to admin.")

    # ==========================================================================
    # EDIT FLOW (/edit or the Edit button)
    # ==========================================================================

    async def _show_edit_menu(self, chat_id, session: Session) -> None:
        product = Product.from_document(session.data)
        await self.reply(chat_id, edit_menu(product))
        if product.image:
            await self.messenger.send_photo(chat_id, product.image, caption="7) 🖼️ Current image")

    async def _edit_text(self, chat_id, session: Session, text: str, actor) -> bool:
        if session.step == Step.AWAITING_CODE:
            found = self.inventory.find_by_code(text)
            if not found:
                raise NotFoundError("❌ Product code not found. Check the code and start again with /edit.")
            key, product = found
            session.product_key = key
            session.product_code = product.code
            session.data = product.to_document()
            session.step = Step.MENU
            await self._show_edit_menu(chat_id, session)
            return True

        if session.step == Step.MENU:
            choice = text.strip()
            if choice == FINISH_EDIT:
                await self._finish_edit(chat_id, session, actor)
                return True
            if choice not in EDIT_CHOICES:
                raise ValidationError("❌ Invalid choice. Type a number from 1 to 8.")
            step, field, label = EDIT_CHOICES[choice]
            session.step = step
            if step == Step.EDIT_IMAGE:
                await self.reply(chat_id, "📸 Send the new photo.")
            else:
                current = session.data.get(field) or "N/A"
                await self.reply(chat_id, f"✏️ {label}: {current}\nEnter the new value:")
            return True

        if session.step in EDIT_STEP_FIELDS and session.step != Step.EDIT_IMAGE:
            if session.step in EDIT_AMOUNT_STEPS:
                value = str(parse_count(text))
            elif session.step == Step.EDIT_CODE:
                value = parse_code(text)
            else:
                value = text.strip()
            session.data[EDIT_STEP_FIELDS[session.step]] = value
            session.step = Step.MENU
            await self._show_edit_menu(chat_id, session)
            return True

        return False

    async def _edit_photo(self, chat_id, session: Session, file_id: str, actor) -> bool:
        if session.step != Step.EDIT_IMAGE:
            return False
        session.data["image"] = file_id
        session.step = Step.MENU
        await self._show_edit_menu(chat_id, session)
        return True

    async def _finish_edit(self, chat_id, session: Session, actor) -> None:
        changes = {field: session.data.get(field) for field in EDITABLE_FIELDS}
        try:
            product = self.inventory.update_fields(session.product_key, changes, updated_by=str(chat_id))
        except StoreError:
            await self._terminal_store_failure(chat_id)
            return
        self.sessions.clear(chat_id)

        await self.notifier.notify_product(product, "updated", actor)
        await self.reply(chat_id, "✅ Product updated and sent to admin.")

    # ==========================================================================
    # ADD STOCK / TRANSFER FLOW (Add Stock button)
    # ==========================================================================

    async def _add_stock_text(self, chat_id, session: Session, text: str, actor) -> bool:
        if session.step == Step.AWAITING_AMOUNT:
            amount = parse_count(text, allow_zero=False)
            try:
                product, new_amount = self.inventory.add_stock(
                    session.product_key, session.location, amount, added_by=str(chat_id)
                )
            except StoreError:
                await self._terminal_store_failure(chat_id)
                return True
            self.sessions.clear(chat_id)
            await self.reply(
                chat_id,
                f"✅ Added {amount} to {LOCATION_LABELS[session.location]} for {product.name} ({product.code}).\n"
                f"New amount: {new_amount}",
            )
            return True

        if session.step == Step.AWAITING_TRANSFER_AMOUNT:
            amount = parse_count(text, allow_zero=False)
            source, destination = session.direction
            try:
                product = self.inventory.transfer_stock(
                    session.product_key, source, destination, amount, moved_by=str(chat_id)
                )
            except StoreError:
                await self._terminal_store_failure(chat_id)
                return True
            self.sessions.clear(chat_id)
            await self.reply(
                chat_id,
                f"✅ Moved {amount} from {LOCATION_LABELS[source]} to {LOCATION_LABELS[destination]}.\n"
                f"📦 In store: {product.amount('store')}\n"
                f"🏪 In market: {product.amount('market')}",
            )
            return True

        return False

    # ==========================================================================
    # SCREENSHOT FLOW (/screenshot)
    # ==========================================================================

    def _id_taken(self, chat_id, screenshot_id: str) -> bool:
        return (
            self.sessions.screenshot_id_reserved(screenshot_id, exclude_chat=chat_id)
            or self.screenshots.exists(screenshot_id)
        )

    async def _screenshot_text(self, chat_id, session: Session, text: str, actor) -> bool:
        if session.step == Step.AWAITING_ID:
            screenshot_id = text.strip()
            if not is_valid_id(screenshot_id):
                raise ValidationError("❌ The id must be exactly 4 digits. Try again.")
            if self._id_taken(chat_id, screenshot_id):
                raise ValidationError("⚠️ This id is already used. Enter a different 4-digit id.")
            session.data["id"] = screenshot_id
            session.step = Step.AWAITING_PHOTO
            await self.reply(chat_id, "📸 Now send the payment screenshot.")
            return True

        if session.step == Step.AWAITING_PHOTO:
            raise ValidationError("📸 Please send the screenshot as a photo, or /cancel.")

        return False

    async def _screenshot_photo(self, chat_id, session: Session, file_id: str, actor) -> bool:
        if session.step != Step.AWAITING_PHOTO:
            return False
        screenshot_id = session.data["id"]
        try:
            saved = self.screenshots.save(screenshot_id, file_id)
        except StoreError:
            await self._terminal_store_failure(chat_id)
            return True

        if not saved:
            session.data.pop("id", None)
            session.step = Step.AWAITING_ID
            await self.reply(chat_id, "⚠️ This id was just taken. Enter a different 4-digit id.")
            return True

        self.sessions.clear(chat_id)
        AuditLog.log_action("screenshot", "screenshot", screenshot_id, chat_id)
        await self.reply(chat_id, f"✅ Screenshot {screenshot_id} saved.")
        return True

    # ==========================================================================
    # INLINE BUTTONS
    # ==========================================================================

    async def handle_callback(self, chat_id, data: str, actor: str = None) -> CallbackAnswer:
        """Handle an inline button tap. Returns the answer to show on the button."""
        self._authorize(chat_id, f"callback:{data}")
        logger.info(f"[FLOW] chat_id={chat_id} callback={data}")

        try:
            if data.startswith(CallbackData.EDIT_PREFIX):
                return await self._start_edit_from_card(chat_id, data[len(CallbackData.EDIT_PREFIX):])
            if data.startswith(CallbackData.ADD_STOCK_PREFIX):
                return await self._start_add_stock(chat_id, data[len(CallbackData.ADD_STOCK_PREFIX):])
            if data in ADD_LOCATIONS or data == CallbackData.TRANSFER or data in TRANSFER_DIRECTIONS:
                return await self._add_stock_choice(chat_id, data)
        except StoreError:
            return CallbackAnswer(GENERIC_FAILURE, show_alert=True)

        logger.warning(f"[FLOW] Unknown callback data '{data}' from chat_id={chat_id}")
        return CallbackAnswer()

    def _product_for_card(self, chat_id, code: str):
        if not self.settings.is_admin(chat_id):
            return None, CallbackAnswer(ADMIN_ONLY, show_alert=True)
        found = self.inventory.find_by_code(code)
        if not found:
            return None, CallbackAnswer("❌ Product not found.", show_alert=True)
        return found, None

    async def _start_edit_from_card(self, chat_id, code: str) -> CallbackAnswer:
        found, refusal = self._product_for_card(chat_id, code)
        if refusal:
            return refusal
        key, product = found
        session = self.sessions.start(
            chat_id, FlowKind.EDIT, Step.MENU,
            data=product.to_document(), product_key=key, product_code=product.code,
        )
        await self._show_edit_menu(chat_id, session)
        return CallbackAnswer()

    async def _start_add_stock(self, chat_id, code: str) -> CallbackAnswer:
        found, refusal = self._product_for_card(chat_id, code)
        if refusal:
            return refusal
        key, product = found
        self.sessions.start(
            chat_id, FlowKind.ADD_STOCK, Step.CHOOSE_LOCATION, product_key=key, product_code=product.code,
        )
        await self.reply(
            chat_id,
            f"➕ Add stock for {product.name} ({product.code})\n"
            f"📦 In store: {product.amount('store')}\n"
            f"🏪 In market: {product.amount('market')}\n\n"
            "Where should the stock go?",
            reply_markup=location_choice(),
        )
        return CallbackAnswer()

    async def _add_stock_choice(self, chat_id, data: str) -> CallbackAnswer:
        session = self.sessions.get(chat_id)
        if session is None or session.flow != FlowKind.ADD_STOCK:
            return CallbackAnswer("⌛ This action has expired. Tap Add Stock again.", show_alert=True)

        if data in ADD_LOCATIONS and session.step == Step.CHOOSE_LOCATION:
            session.location = ADD_LOCATIONS[data]
            session.step = Step.AWAITING_AMOUNT
            await self.reply(chat_id, f"🔢 How many to add to {LOCATION_LABELS[session.location]}?")
            return CallbackAnswer()

        if data == CallbackData.TRANSFER and session.step == Step.CHOOSE_LOCATION:
            session.step = Step.AWAITING_TRANSFER_DIRECTION
            await self.reply(chat_id, "🔁 Which direction?", reply_markup=transfer_choice())
            return CallbackAnswer()

        if data in TRANSFER_DIRECTIONS and session.step == Step.AWAITING_TRANSFER_DIRECTION:
            source, destination = TRANSFER_DIRECTIONS[data]
            session.direction = (source, destination)
            session.step = Step.AWAITING_TRANSFER_AMOUNT
            product = self.inventory.get(session.product_key)
            available = product.amount(source) if product else 0
            await self.reply(
                chat_id,
                f"🔢 How many to move from {LOCATION_LABELS[source]} to {LOCATION_LABELS[destination]}? "
                f"(available: {available})",
            )
            return CallbackAnswer()

        return CallbackAnswer("⌛ This action has expired. Tap Add Stock again.", show_alert=True)
