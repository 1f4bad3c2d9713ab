from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _scalar_as_text(value: Any) -> Any:
    # Front ends send numeric codes as JSON numbers
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class SendCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_code: Optional[str] = Field(default=None, alias="botCode")
    admin_name: Optional[str] = Field(default=None, alias="adminName")

    @field_validator("bot_code", "admin_name", mode="before")
    @classmethod
    def scalar_as_text(cls, value):
        return _scalar_as_text(value)


class SendCodeResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_code: Optional[str] = Field(default=None, alias="botCode")
    verification_code: Optional[str] = Field(default=None, alias="verificationCode")

    @field_validator("bot_code", "verification_code", mode="before")
    @classmethod
    def scalar_as_text(cls, value):
        return _scalar_as_text(value)


class VerifyCodeResponse(BaseModel):
    success: bool
    message: Optional[str] = None
