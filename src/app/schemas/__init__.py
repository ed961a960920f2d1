"""Schemas package."""

from app.schemas.auth import Token, TokenData, UserRegister
from app.schemas.banking import (
    DirectoryCount,
    DirectoryCreate,
    DirectoryLoginRequest,
    DirectoryLoginResponse,
    DirectoryRename,
    DirectoryResponse,
    LogoutResponse,
    ProviderCredentials,
    SelectClientRequest,
    SelectClientResponse,
    TransferConfirmRequest,
    TransferPreprocessRequest,
)
from app.schemas.prometeo import (
    AccountMovement,
    BankAccount,
    Client,
    LoginResult,
    LoginSession,
    Provider,
    SessionRequirement,
    TransferConfirmation,
    TransferInstitution,
    TransferRequest,
)
from app.schemas.user import UserResponse

__all__ = [
    # Authentication schemas
    "Token",
    "TokenData",
    "UserRegister",
    # User schemas
    "UserResponse",
    # Directory schemas
    "DirectoryCount",
    "DirectoryCreate",
    "DirectoryLoginRequest",
    "DirectoryLoginResponse",
    "DirectoryRename",
    "DirectoryResponse",
    "LogoutResponse",
    "ProviderCredentials",
    "SelectClientRequest",
    "SelectClientResponse",
    "TransferConfirmRequest",
    "TransferPreprocessRequest",
    # Upstream schemas
    "AccountMovement",
    "BankAccount",
    "Client",
    "LoginResult",
    "LoginSession",
    "Provider",
    "SessionRequirement",
    "TransferConfirmation",
    "TransferInstitution",
    "TransferRequest",
]
