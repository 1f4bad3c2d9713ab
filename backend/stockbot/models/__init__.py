from stockbot.models.document import Document

__all__ = ["Document"]
