"""Image proxy: turns a Telegram file id into a temporary download URL."""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, RedirectResponse

from stockbot.api.deps import get_bot_gateway
from stockbot.telegram.bot import BotGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/telegram-image/{file_id}")
async def telegram_image(file_id: str, gateway: BotGateway = Depends(get_bot_gateway)):
    try:
        url = await gateway.resolve_file_url(file_id)
    except Exception as e:
        logger.error(f"[IMAGE] Failed to get Telegram file {file_id}: {e}")
        return PlainTextResponse("Image not found", status_code=404)
    return RedirectResponse(url)
