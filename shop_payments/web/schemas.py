"""Request bodies for the HTTP API."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ShopRequest(_Body):
    shop_id: str = Field(alias="shopId", pattern=ID_PATTERN)


class OptionalShopRequest(_Body):
    shop_id: Optional[str] = Field(default=None, alias="shopId", pattern=ID_PATTERN)


class RegisterTerminalRequest(_Body):
    shop_id: str = Field(alias="shopId", pattern=ID_PATTERN)
    registration_code: str = Field(alias="registrationCode", min_length=1, max_length=32)


class CreatePaymentRequest(_Body):
    invoice_id: str = Field(alias="invoiceId", pattern=ID_PATTERN)
    shop_id: str = Field(alias="shopId", pattern=ID_PATTERN)


class AutoWithdrawRequest(_Body):
    action: Literal["enable", "disable"]
