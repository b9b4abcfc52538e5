"""Producer and product schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from splitpay.models.producer import DocumentType, ProducerStatus


class ProducerCreate(BaseModel):
    business_name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    document_type: DocumentType | None = None
    document_number: str | None = Field(default=None, max_length=32)
    platform_fee_percentage: Decimal = Field(default=Decimal("10"), ge=Decimal("0"), le=Decimal("100"))


class ProducerRead(BaseModel):
    id: int
    business_name: str
    email: EmailStr
    document_type: DocumentType | None
    platform_fee_percentage: Decimal
    status: ProducerStatus
    mp_connected: bool
    mp_user_id: str | None
    efi_connected: bool
    efi_account_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    price: Decimal = Field(gt=Decimal("0"), decimal_places=2)
    currency: str = Field(default="BRL", pattern="^BRL$")
    is_active: bool = True


class ProductRead(BaseModel):
    id: int
    producer_id: int
    name: str
    description: str | None
    price: Decimal
    currency: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
