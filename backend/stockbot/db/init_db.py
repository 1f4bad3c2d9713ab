"""Create all tables. Run on app startup."""
import logging

from stockbot.db.base import Base
from stockbot.db.session import engine
from stockbot.models import document  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Document store tables ready")
