"""Schemas for checkout requests and payment read models."""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, model_validator

from splitpay.models.payment import PaymentGateway, PaymentStatus, RecipientType, SplitStatus

MODE_ALIASES = {
    "redirect": "redirect",
    "checkout_pro": "redirect",
    "transparent": "transparent",
    "brick": "transparent",
    "pix": "pix",
}


class PayerData(BaseModel):
    email: EmailStr | None = None
    name: str | None = Field(default=None, max_length=255)
    document: str | None = Field(default=None, validation_alias=AliasChoices("document", "cpf", "cnpj"))


class CheckoutPaymentData(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    price: Decimal | None = None
    product_id: int | None = Field(default=None, alias="productId", gt=0)
    gateway: PaymentGateway = PaymentGateway.MERCADOPAGO
    mode: str | None = None
    form_data: dict[str, Any] | None = Field(default=None, alias="formData")
    success_url: str | None = Field(default=None, alias="successUrl")
    failure_url: str | None = Field(default=None, alias="failureUrl")
    pending_url: str | None = Field(default=None, alias="pendingUrl")
    payer: PayerData | None = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def normalise_mode(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.get("mode") or data.pop("type", None)
        if raw is not None:
            mode = MODE_ALIASES.get(str(raw).lower())
            if mode is None:
                raise ValueError(f"Unknown checkout mode {raw!r}.")
            data["mode"] = mode
        return data

    @model_validator(mode="after")
    def validate_target(self) -> "CheckoutPaymentData":
        if self.product_id is None and (not self.title or self.price is None):
            raise ValueError("Either productId or both title and price must be provided.")
        if self.mode is None:
            if self.gateway == PaymentGateway.EFI:
                self.mode = "pix"
            else:
                self.mode = "transparent" if self.form_data else "redirect"
        if self.mode == "transparent" and not self.form_data:
            raise ValueError("formData is required for transparent checkout.")
        if self.mode == "pix" and self.gateway != PaymentGateway.EFI:
            self.gateway = PaymentGateway.EFI
        return self


class CheckoutRequest(BaseModel):
    producer_id: int = Field(alias="producerId", gt=0)
    payment_data: CheckoutPaymentData = Field(alias="paymentData")

    model_config = ConfigDict(populate_by_name=True)


class PaymentSplitRead(BaseModel):
    recipient_type: RecipientType
    recipient_id: str
    amount: Decimal
    percentage: Decimal
    status: SplitStatus
    processed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class PaymentRead(BaseModel):
    id: int
    external_reference: str
    producer_id: int
    product_id: int | None
    gateway: PaymentGateway
    payment_type: str | None
    payment_method: str | None
    currency: str
    total_amount: Decimal
    platform_fee: Decimal
    producer_amount: Decimal
    fee_percentage: Decimal
    status: PaymentStatus
    status_detail: str | None
    mp_payment_id: str | None
    efi_txid: str | None
    efi_e2eid: str | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime
    splits: list[PaymentSplitRead]

    model_config = ConfigDict(from_attributes=True)


class PixStatusRead(BaseModel):
    txid: str = Field(validation_alias="efi_txid")
    status: PaymentStatus
    status_detail: str | None
    external_reference: str
    end_to_end_id: str | None = Field(default=None, validation_alias="efi_e2eid")
    approved_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
