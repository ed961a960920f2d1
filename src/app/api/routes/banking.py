"""Banking endpoints.

Directory management plus the upstream operations that run on a directory's
session. Every session-consuming endpoint accepts an optional
``X-Session-Key`` header; without it a session is acquired automatically.
"""

from fastapi import APIRouter, Query, Request, Response, status

from app.core.config import settings
from app.core.deps import Catalog, CurrentActiveUser, Directories, SessionKey
from app.core.rate_limit import limiter
from app.models.banking_directory import BankingDirectory
from app.schemas.banking import (
    DirectoryCount,
    DirectoryCreate,
    DirectoryLoginRequest,
    DirectoryLoginResponse,
    DirectoryRename,
    DirectoryResponse,
    LogoutResponse,
    SelectClientRequest,
    SelectClientResponse,
    TransferConfirmRequest,
    TransferPreprocessRequest,
)
from app.schemas.prometeo import (
    AccountMovement,
    BankAccount,
    Client,
    Provider,
    TransferConfirmation,
    TransferInstitution,
    TransferRequest,
)

router = APIRouter()


@router.get("/catalog", response_model=list[Provider])
async def list_catalog(current_user: CurrentActiveUser, catalog: Catalog) -> list[Provider]:
    """List the providers a directory can be set up with."""
    return await catalog.list_providers()


# ----------------------------------------------------------------------
# Directories
# ----------------------------------------------------------------------


@router.post("/directory", response_model=DirectoryResponse, status_code=status.HTTP_201_CREATED)
async def create_directory(
    payload: DirectoryCreate,
    current_user: CurrentActiveUser,
    directories: Directories,
) -> BankingDirectory:
    """
    Set up access to a provider.

    Credentials are validated against the provider's login fields, then
    stored encrypted. They are never returned.
    """
    return await directories.setup(current_user.id, payload)


@router.get("/directory", response_model=list[DirectoryResponse])
async def list_directories(
    current_user: CurrentActiveUser,
    directories: Directories,
) -> list[BankingDirectory]:
    return await directories.list_directories(current_user.id)


@router.get("/directory/count", response_model=DirectoryCount)
async def count_directories(
    current_user: CurrentActiveUser,
    directories: Directories,
) -> DirectoryCount:
    return DirectoryCount(count=await directories.count_directories(current_user.id))


@router.patch("/directory/{directory_id}", response_model=DirectoryResponse)
async def rename_directory(
    directory_id: int,
    payload: DirectoryRename,
    current_user: CurrentActiveUser,
    directories: Directories,
) -> BankingDirectory:
    """Rename a directory; a null or empty name clears it."""
    return await directories.rename(current_user.id, directory_id, payload.name)


@router.delete("/directory/{directory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_directory(
    directory_id: int,
    current_user: CurrentActiveUser,
    directories: Directories,
) -> Response:
    """
    Delete a directory.

    Raises:
        NotFoundError: 404 if the directory does not exist or is not yours
    """
    await directories.delete(current_user.id, directory_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------


@router.post("/directory/{directory_id}/login", response_model=DirectoryLoginResponse)
async def login_directory(
    directory_id: int,
    payload: DirectoryLoginRequest,
    current_user: CurrentActiveUser,
    directories: Directories,
) -> DirectoryLoginResponse:
    """
    Log in to the directory's provider.

    ``session.requires`` tells what is still missing: ``specify_client``
    (pick one of ``clients`` with select-client) or ``otp_code`` (call again
    with ``otp``).
    """
    result = await directories.login(current_user.id, directory_id, payload.otp)
    return DirectoryLoginResponse(session=result.session, clients=result.clients)


@router.get("/directory/{directory_id}/clients", response_model=list[Client])
async def list_clients(
    directory_id: int,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> list[Client]:
    return await directories.get_clients(current_user.id, directory_id, session_key)


@router.post("/directory/{directory_id}/select-client", response_model=SelectClientResponse)
async def select_client(
    directory_id: int,
    payload: SelectClientRequest,
    current_user: CurrentActiveUser,
    directories: Directories,
) -> SelectClientResponse:
    """Select a client; the returned key is the one to use from now on."""
    key = await directories.select_client(current_user.id, directory_id, payload.key, payload.client)
    return SelectClientResponse(key=key)


@router.delete("/directory/{directory_id}/session", response_model=LogoutResponse)
async def logout_directory(
    directory_id: int,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> LogoutResponse:
    success = await directories.logout(current_user.id, directory_id, session_key)
    return LogoutResponse(success=success)


# ----------------------------------------------------------------------
# Accounts and transfers
# ----------------------------------------------------------------------


@router.get("/directory/{directory_id}/accounts", response_model=list[BankAccount])
async def list_accounts(
    directory_id: int,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> list[BankAccount]:
    return await directories.list_accounts(current_user.id, directory_id, session_key)


@router.get(
    "/directory/{directory_id}/accounts/{account_number}/movements",
    response_model=list[AccountMovement],
)
async def list_movements(
    directory_id: int,
    account_number: str,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
    currency: str = Query(..., description="ISO 4217 currency code, e.g. PEN"),
    start_date: str = Query(..., description="dd/mm/yyyy"),
    end_date: str = Query(..., description="dd/mm/yyyy"),
) -> list[AccountMovement]:
    """
    List the movements of an account between two dates.

    Raises:
        ValidationError: 400 on a malformed currency or date
    """
    return await directories.list_movements(
        current_user.id,
        directory_id,
        account_number,
        currency=currency,
        start_date=start_date,
        end_date=end_date,
        session_key=session_key,
    )


@router.get("/directory/{directory_id}/institutions", response_model=list[TransferInstitution])
async def list_institutions(
    directory_id: int,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> list[TransferInstitution]:
    """List the institutions transfers can be sent to."""
    return await directories.list_institutions(current_user.id, directory_id, session_key)


@router.post("/directory/{directory_id}/request-transfer", response_model=TransferRequest)
@limiter.limit(settings.TRANSFER_RATE_LIMIT)
async def request_transfer(
    request: Request,
    directory_id: int,
    payload: TransferPreprocessRequest,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> TransferRequest:
    """
    Preprocess a transfer.

    Returns whether it is approved, the authorization methods accepted to
    confirm it and the ``request_id`` to confirm with.
    """
    return await directories.request_transfer(current_user.id, directory_id, payload, session_key)


@router.post("/directory/{directory_id}/confirm-transfer", response_model=TransferConfirmation)
@limiter.limit(settings.TRANSFER_RATE_LIMIT)
async def confirm_transfer(
    request: Request,
    directory_id: int,
    payload: TransferConfirmRequest,
    current_user: CurrentActiveUser,
    directories: Directories,
    session_key: SessionKey,
) -> TransferConfirmation:
    """Confirm a preprocessed transfer. Sent to the provider exactly once."""
    return await directories.confirm_transfer(current_user.id, directory_id, payload, session_key)
