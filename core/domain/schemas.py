"""Pydantic request schemas validated before any side effect."""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

_AMOUNT_RE = re.compile(r"^\d+(\.\d+)?$")


class CreatePendingTransferRequest(BaseModel):
    recipient_email: EmailStr = Field(alias="recipientEmail")
    sender_user_id: str = Field(alias="senderUserId", min_length=1)
    amount: str
    token: str = Field(min_length=1)
    token_address: str = Field(alias="tokenAddress", min_length=1)
    chain: str = Field(min_length=1)
    decimals: int = Field(ge=0, le=36)
    message: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("recipient_email")
    @classmethod
    def normalize_recipient(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("amount")
    @classmethod
    def positive_decimal_string(cls, value: str) -> str:
        value = value.strip()
        if not _AMOUNT_RE.match(value):
            raise ValueError("amount must be a plain decimal string")
        try:
            if Decimal(value) <= 0:
                raise ValueError("amount must be greater than zero")
        except InvalidOperation:
            raise ValueError("amount must be a plain decimal string")
        return value
