"""
In-memory conversation sessions, one active flow per chat.

Sessions are process-lifetime only: a restart drops in-flight flows and
users simply start over.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class FlowKind:
    REGISTER = "register"
    EDIT = "edit"
    ADD_STOCK = "add_stock"
    SCREENSHOT = "screenshot"


class Step:
    # Registration
    AWAITING_IMAGE = "awaiting_image"
    AWAITING_NAME = "awaiting_name"
    AWAITING_CODE = "awaiting_code"
    AWAITING_COST = "awaiting_cost"
    AWAITING_SELLING = "awaiting_selling"
    AWAITING_STORE_AMOUNT = "awaiting_store_amount"
    AWAITING_MARKET_AMOUNT = "awaiting_market_amount"

    # Edit (AWAITING_CODE shared with registration)
    MENU = "menu"
    EDIT_NAME = "edit_name"
    EDIT_CODE = "edit_code"
    EDIT_COST = "edit_cost"
    EDIT_SELLING = "edit_selling"
    EDIT_STORE_AMOUNT = "edit_store_amount"
    EDIT_MARKET_AMOUNT = "edit_market_amount"
    EDIT_IMAGE = "edit_image"

    # Add stock / transfer
    CHOOSE_LOCATION = "choose_location"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_TRANSFER_DIRECTION = "awaiting_transfer_direction"
    AWAITING_TRANSFER_AMOUNT = "awaiting_transfer_amount"

    # Screenshot upload
    AWAITING_ID = "awaiting_id"
    AWAITING_PHOTO = "awaiting_photo"


@dataclass
class Session:
    flow: str
    step: str
    data: Dict[str, Any] = field(default_factory=dict)
    product_key: Optional[str] = None
    product_code: Optional[str] = None
    location: Optional[str] = None
    direction: Optional[tuple] = None  # (source, destination) for transfers


class SessionStore:
    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, chat_id) -> Optional[Session]:
        return self._sessions.get(str(chat_id))

    def start(self, chat_id, flow: str, step: str, **fields) -> Session:
        """Begin a flow, replacing whatever the chat was doing before."""
        session = Session(flow=flow, step=step, **fields)
        self._sessions[str(chat_id)] = session
        return session

    def clear(self, chat_id) -> bool:
        return self._sessions.pop(str(chat_id), None) is not None

    def screenshot_id_reserved(self, screenshot_id: str, exclude_chat=None) -> bool:
        """True if another chat has picked this id and is still uploading."""
        for chat_id, session in self._sessions.items():
            if chat_id == str(exclude_chat):
                continue
            if session.flow == FlowKind.SCREENSHOT and session.data.get("id") == screenshot_id:
                return True
        return False

    def __len__(self):
        return len(self._sessions)
