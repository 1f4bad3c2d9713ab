from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Document field holding the amount for each stock location
AMOUNT_FIELDS = {
    "store": "amountInStore",
    "market": "amountInMarket",
}


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def parse_amount(value: Any) -> int:
    """Stored amounts are numeric strings; absent or non-numeric counts as zero."""
    if value is None:
        return 0
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return 0


class Product(BaseModel):
    """A furniture item as stored under ``products/<key>``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    code: str = ""
    name: str = ""
    cost_price: Optional[str] = Field(default=None, alias="costPrice")
    selling_price: Optional[str] = Field(default=None, alias="sellingPrice")
    amount_in_store: Optional[str] = Field(default=None, alias="amountInStore")
    amount_in_market: Optional[str] = Field(default=None, alias="amountInMarket")
    image: Optional[str] = None
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    @field_validator("code", "name", mode="before")
    @classmethod
    def _stringify(cls, v):
        return "" if v is None else str(v)

    @field_validator(
        "cost_price", "selling_price", "amount_in_store", "amount_in_market", "created_by",
        mode="before",
    )
    @classmethod
    def _optional_string(cls, v):
        return None if v is None else str(v)

    def amount(self, location: str) -> int:
        return parse_amount(getattr(self, "amount_in_store" if location == "store" else "amount_in_market"))

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Product":
        return cls.model_validate(data or {})


class StockAdjustmentLogEntry(BaseModel):
    """Audit trail row appended to ``added_product`` when stock increases."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    code: str
    amount_added: int = Field(alias="amountAdded")
    date_added: int = Field(alias="dateAdded")
    new_amount: int = Field(alias="newAmount")
    location: str
