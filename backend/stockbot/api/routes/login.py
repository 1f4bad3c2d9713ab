"""Login code flow for the admin web front end.

/send-code sends one fresh 6-digit code to each admin (or only the named
admin) and stores the set under the bot code; /verify-code checks a
submitted code against that set.

Codes are low-assurance on purpose: no expiry and no single-use
invalidation. A code stays valid until the next /send-code for the same
bot code replaces the set.
"""
import logging

from fastapi import APIRouter, Depends, Request

from stockbot.api.deps import get_bot_gateway, get_settings, get_verification_codes
from stockbot.core.audit import AuditLog
from stockbot.core.config import Settings
from stockbot.core.exceptions import ApiError, StoreError
from stockbot.schemas.login import SendCodeRequest, SendCodeResponse, VerifyCodeRequest, VerifyCodeResponse
from stockbot.services.verification import VerificationCodes, generate_code
from stockbot.telegram.bot import BotGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/send-code", response_model=SendCodeResponse, response_model_exclude_none=True)
async def send_code(
    data: SendCodeRequest,
    codes: VerificationCodes = Depends(get_verification_codes),
    gateway: BotGateway = Depends(get_bot_gateway),
    config: Settings = Depends(get_settings),
):
    """
    Generate and deliver login codes.

    The code set is stored only after every message went out, so a failed
    dispatch leaves any earlier set in place.
    """
    bot_code = (data.bot_code or "").strip()
    logger.info(f"[LOGIN] send-code request bot_code={bot_code!r} admin={data.admin_name!r}")

    if not bot_code:
        raise ApiError.bad_request({"success": False, "error": "Bot code missing."})

    if data.admin_name:
        if data.admin_name not in config.ADMIN_CHATS:
            raise ApiError.bad_request({"success": False, "error": "Unknown admin."})
        recipients = {data.admin_name: config.ADMIN_CHATS[data.admin_name]}
    else:
        recipients = dict(config.ADMIN_CHATS)

    if not recipients:
        raise ApiError.server_error(detail={"success": False, "error": "No admin recipients configured."})

    issued = []
    try:
        for name, chat_id in recipients.items():
            code = generate_code()
            await gateway.send_message(
                chat_id,
                f"🔐 Login Attempt\nBot Code: {bot_code}\nYour Verification Code: {code}",
            )
            issued.append(code)
        codes.save(bot_code, issued)
    except Exception as e:
        AuditLog.log_codes_sent(bot_code, list(recipients), False, reason=type(e).__name__)
        raise ApiError.server_error(e, detail={"success": False, "error": "Failed to send messages."})

    AuditLog.log_codes_sent(bot_code, list(recipients), True)
    return SendCodeResponse(success=True)


@router.post("/verify-code", response_model=VerifyCodeResponse, response_model_exclude_none=True)
def verify_code(
    data: VerifyCodeRequest,
    request: Request,
    codes: VerificationCodes = Depends(get_verification_codes),
):
    bot_code = (data.bot_code or "").strip()
    if not bot_code:
        raise ApiError.bad_request({"success": False, "message": "Bot code missing."})

    try:
        ok, message = codes.verify(bot_code, data.verification_code or "")
    except StoreError as e:
        raise ApiError.server_error(e, detail={"success": False})

    AuditLog.log_code_verification(bot_code, ok, request.client.host if request.client else "")
    return VerifyCodeResponse(success=ok, message=message or None)
