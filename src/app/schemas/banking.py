"""Banking directory and transfer schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.core.constants import PrometeoConstants
from app.schemas.prometeo import Client, LoginSession


class ProviderCredentials(BaseModel):
    """Credentials for a provider.

    Only ever held in memory while being encrypted or decrypted.
    ``additional_fields`` carries provider-specific fields such as ``type``
    and ``document_number``.
    """

    username: str = Field(..., repr=False)
    password: str = Field(..., repr=False)
    additional_fields: dict[str, str] = Field(default_factory=dict, repr=False)


class DirectoryCreate(BaseModel):
    """Schema for setting up access to a provider."""

    name: str | None = None
    provider: str = Field(..., min_length=1, max_length=255)
    credentials: ProviderCredentials


class DirectoryRename(BaseModel):
    """Schema for renaming a directory; ``None`` clears the name."""

    name: str | None = None


class DirectoryResponse(BaseModel):
    """Credential-free projection of a directory."""

    id: int
    name: str | None
    provider_name: str
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class DirectoryCount(BaseModel):
    count: int


class DirectoryLoginRequest(BaseModel):
    """Explicit login; ``otp`` resubmits a login that asked for one."""

    otp: str | None = Field(None, min_length=1, max_length=64)


class DirectoryLoginResponse(BaseModel):
    session: LoginSession
    clients: list[Client] | None = None


class SelectClientRequest(BaseModel):
    key: str = Field(
        ...,
        min_length=PrometeoConstants.SESSION_KEY_LENGTH,
        max_length=PrometeoConstants.SESSION_KEY_LENGTH,
    )
    client: str = Field(..., min_length=1, max_length=255)


class SelectClientResponse(BaseModel):
    """Session key to use from now on; some providers rotate it."""

    key: str


class LogoutResponse(BaseModel):
    success: bool


class TransferPreprocessRequest(BaseModel):
    """First phase of a transfer."""

    origin_account: str = Field(..., min_length=1, max_length=64)
    destination_account: str = Field(..., min_length=1, max_length=64)
    destination_institution: int = Field(..., ge=0)
    destination_owner_name: str | None = Field(None, max_length=255)
    destination_account_type: str | None = Field(None, max_length=64)
    concept: str = Field(..., min_length=1, max_length=255)
    branch: int | None = None
    currency: str = Field(..., pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")
    amount: Decimal = Field(..., gt=0, decimal_places=2)

    def to_form(self) -> dict[str, str]:
        """Form fields for ``POST /transfer/preprocess``."""
        form = {
            "origin_account": self.origin_account,
            "destination_account": self.destination_account,
            "destination_institution": str(self.destination_institution),
            "concept": self.concept,
            "currency": self.currency,
            "amount": str(self.amount),
            "branch": "" if self.branch is None else str(self.branch),
        }
        if self.destination_owner_name:
            form["destination_owner_name"] = self.destination_owner_name
        if self.destination_account_type:
            form["destination_account_type"] = self.destination_account_type
        return form


class TransferConfirmRequest(BaseModel):
    """Second phase of a transfer: proof of authorization."""

    request_id: str = Field(..., min_length=1, max_length=255)
    authorization_type: str = Field(..., min_length=1, max_length=64)
    authorization_data: str = Field(..., min_length=1, max_length=255, repr=False)
    authorization_device_number: str | None = Field(None, max_length=64)

    def to_form(self) -> dict[str, str]:
        form = {
            "request_id": self.request_id,
            "authorization_type": self.authorization_type,
            "authorization_data": self.authorization_data,
        }
        if self.authorization_device_number:
            form["authorization_device_number"] = self.authorization_device_number
        return form
