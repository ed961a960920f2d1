"""Schemas for the Prometeo banking aggregation API.

These mirror the upstream JSON payloads closely; unknown upstream fields are
ignored so provider-specific additions do not break parsing.
"""

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpstreamModel(BaseModel):
    """Base for upstream payloads."""

    model_config = ConfigDict(extra="ignore")


class ProviderAuthField(UpstreamModel):
    """A credential field a provider asks for at login."""

    name: str
    type: str | None = None
    interactive: bool = False
    optional: bool = False
    label_es: str | None = None
    label_en: str | None = None


class ProviderBank(UpstreamModel):
    code: str
    name: str
    logo: str | None = None


class ProviderSummary(UpstreamModel):
    """Item of the ``/provider/`` listing."""

    code: str
    country: str
    name: str


class Provider(UpstreamModel):
    """Detailed provider, as returned by ``/provider/{code}/``."""

    name: str
    country: str | None = None
    aliases: list[str] = Field(default_factory=list)
    auth_fields: list[ProviderAuthField] = Field(default_factory=list)
    methods: dict[str, Any] | None = None
    bank: ProviderBank


class Client(UpstreamModel):
    """Sub-account selectable after login on some providers."""

    id: str
    name: str


class BankAccount(UpstreamModel):
    id: str | int
    name: str
    number: str
    branch: str | None = None
    currency: str
    balance: float | None = None


class AccountMovement(UpstreamModel):
    id: str | int
    reference: str | None = None
    date: str
    detail: str | None = None
    debit: float | str | None = None
    credit: float | str | None = None
    extra_data: dict[str, Any] | None = None


class TransferInstitution(UpstreamModel):
    """Destination institution usable in a transfer (e.g. ``0: BCP``)."""

    id: int
    name: str


class AuthorizationDevice(UpstreamModel):
    """An authorization method accepted to confirm a transfer."""

    type: str
    data: list[str] | None = None


class TransferRequest(UpstreamModel):
    """Outcome of preprocessing a transfer.

    ``request_id`` must be echoed back when confirming.
    """

    approved: bool
    authorization_devices: list[AuthorizationDevice] = Field(default_factory=list)
    message: str | None = None
    request_id: str

    @field_validator("authorization_devices", mode="before")
    @classmethod
    def wrap_single_device(cls, v: Any) -> Any:
        """Some providers send a single device object instead of a list."""
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v


class TransferConfirmation(UpstreamModel):
    success: bool
    message: str | None = None


class SessionRequirement(str, enum.Enum):
    """What the caller still has to do before the session is usable."""

    NOTHING = "nothing"
    SPECIFY_CLIENT = "specify_client"
    OTP_CODE = "otp_code"
    ANSWER_QUESTION = "answer_question"


class LoginSession(BaseModel):
    key: str
    requires: SessionRequirement


class LoginResult(BaseModel):
    """Normalized outcome of a login, whatever the upstream status was."""

    session: LoginSession
    clients: list[Client] | None = None


class LoginRequest(BaseModel):
    """Form payload for ``POST /login/``."""

    provider: str
    username: str = Field(repr=False)
    password: str = Field(repr=False)
    type: str | None = None
    document_number: str | None = Field(default=None, repr=False)
    otp: str | None = Field(default=None, repr=False)
    extra_fields: dict[str, str] = Field(default_factory=dict, repr=False)

    def to_form(self) -> dict[str, str]:
        """Flatten to form fields, skipping empty optional values."""
        form = {
            "provider": self.provider,
            "username": self.username,
            "password": self.password,
        }
        for field in ("type", "otp", "document_number"):
            value = getattr(self, field)
            if value:
                form[field] = value
        for name, value in self.extra_fields.items():
            form.setdefault(name, value)
        return form
