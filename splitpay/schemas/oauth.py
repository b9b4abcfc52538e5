"""Schemas for gateway account connection."""
from pydantic import BaseModel, ConfigDict, Field


class ConnectAccountRequest(BaseModel):
    code: str = Field(min_length=1)
    producer_id: int = Field(alias="producerId", gt=0)
    redirect_uri: str = Field(alias="redirectUri", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class EfiConnectRequest(BaseModel):
    producer_id: int = Field(alias="producerId", gt=0)
    efi_account_id: str = Field(alias="efiAccountId", min_length=1, max_length=64)
    pix_key: str | None = Field(default=None, alias="pixKey", max_length=140)
    pix_key_type: str | None = Field(default=None, alias="pixKeyType", max_length=20)

    model_config = ConfigDict(populate_by_name=True)


class ConnectResponse(BaseModel):
    success: bool = True
    message: str | None = None
