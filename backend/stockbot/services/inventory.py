"""Inventory read/update over the ``products`` collection.

Products live under generated keys; the business ``code`` is a plain field,
so lookups by code scan the collection and the first match wins.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from stockbot.core.audit import AuditLog
from stockbot.core.exceptions import InsufficientStockError, NotFoundError
from stockbot.schemas.product import (
    AMOUNT_FIELDS,
    Product,
    StockAdjustmentLogEntry,
    now_ms,
    parse_amount,
)
from stockbot.store.document_store import DocumentStore

logger = logging.getLogger(__name__)

PRODUCTS = "products"
STOCK_LOG = "added_product"


def _path(key: str) -> str:
    return f"{PRODUCTS}/{key}"


class InventoryRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def list_all(self) -> List[Tuple[str, Product]]:
        return [(key, Product.from_document(data)) for key, data in self.store.children(PRODUCTS)]

    def find_by_code(self, code: str) -> Optional[Tuple[str, Product]]:
        """First product whose business code equals ``code`` (stripped)."""
        code = (code or "").strip()
        for key, product in self.list_all():
            if product.code == code:
                return key, product
        return None

    def get(self, key: str) -> Optional[Product]:
        data = self.store.get(_path(key))
        return Product.from_document(data) if data is not None else None

    def create(self, fields: Dict[str, Any], created_by) -> str:
        product = Product.model_validate({**fields, "createdBy": created_by, "createdAt": now_ms()})
        key = self.store.push(PRODUCTS, product.to_document())
        logger.info(f"[INVENTORY] Created product key={key} code='{product.code}'")
        AuditLog.log_action("create", "product", key, created_by, changes={"code": product.code})
        return key

    def update_fields(self, key: str, partial: Dict[str, Any], updated_by=None) -> Product:
        """Merge ``partial`` (document field names) into the product; unspecified fields untouched."""
        fields = {**partial, "updatedAt": now_ms()}
        merged = self.store.update(_path(key), fields)
        logger.info(f"[INVENTORY] Updated product key={key} fields={sorted(partial)}")
        AuditLog.log_action("update", "product", key, updated_by, changes=partial)
        return Product.from_document(merged)

    def add_stock(self, key: str, location: str, amount: int, added_by=None) -> Tuple[Product, int]:
        """
        Add ``amount`` to one location and append a stock log entry.

        Returns:
            (updated product, new amount at that location)
        """
        field = AMOUNT_FIELDS[location]

        def apply(current):
            if current is None:
                raise NotFoundError("❌ Product not found.")
            return {field: str(parse_amount(current.get(field)) + amount), "updatedAt": now_ms()}

        product = Product.from_document(self.store.transaction(_path(key), apply))
        new_amount = product.amount(location)

        entry = StockAdjustmentLogEntry(
            name=product.name,
            code=product.code,
            amountAdded=amount,
            dateAdded=now_ms(),
            newAmount=new_amount,
            location=location,
        )
        self.store.push(STOCK_LOG, entry.model_dump(by_alias=True))

        logger.info(f"[INVENTORY] +{amount} to {location} for key={key}, now {new_amount}")
        AuditLog.log_action("add_stock", "product", key, added_by, changes={field: new_amount})
        return product, new_amount

    def transfer_stock(self, key: str, source: str, destination: str, amount: int, moved_by=None) -> Product:
        """Move ``amount`` between locations; both fields are written together."""
        source_field = AMOUNT_FIELDS[source]
        dest_field = AMOUNT_FIELDS[destination]

        def apply(current):
            if current is None:
                raise NotFoundError("❌ Product not found.")
            available = parse_amount(current.get(source_field))
            if available < amount:
                raise InsufficientStockError(source, available, amount)
            return {
                source_field: str(available - amount),
                dest_field: str(parse_amount(current.get(dest_field)) + amount),
                "updatedAt": now_ms(),
            }

        product = Product.from_document(self.store.transaction(_path(key), apply))
        logger.info(f"[INVENTORY] Moved {amount} {source} -> {destination} for key={key}")
        AuditLog.log_action(
            "transfer", "product", key, moved_by,
            changes={source_field: product.amount(source), dest_field: product.amount(destination)},
        )
        return product

    def apply_sale(self, key: str, location: str, quantity: int, policy: str = "local") -> Tuple[Product, int]:
        """
        Record a sale against one location.

        ``local`` subtracts here and clamps at zero; ``upstream`` trusts that
        the storefront already decremented the stored amount.

        Returns:
            (product, remaining amount, never negative)
        """
        field = AMOUNT_FIELDS[location]

        if policy == "upstream":
            product = self.get(key)
            if product is None:
                raise NotFoundError(f"Product {key} not found")
            return product, max(product.amount(location), 0)

        def apply(current):
            if current is None:
                raise NotFoundError(f"Product {key} not found")
            remaining = max(parse_amount(current.get(field)) - quantity, 0)
            return {field: str(remaining), "updatedAt": now_ms()}

        product = Product.from_document(self.store.transaction(_path(key), apply))
        return product, product.amount(location)
