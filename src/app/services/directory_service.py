"""Service layer for banking directories.

A directory is a user's stored access to one provider: the provider name and
the encrypted credentials. This service owns the directory lifecycle (setup,
rename, delete, list, count) and every operation that needs a live upstream
session. Sessions are acquired lazily:

1. a session key given by the caller (``X-Session-Key``) is used as is;
2. otherwise the cached key for (user, directory) is used;
3. otherwise the stored credentials are decrypted and a fresh login is made,
   and its key is cached for the configured TTL.

A login that still requires interaction (OTP, client selection) cannot be
completed automatically; ``InteractionRequiredError`` is raised and the caller
finishes the flow through ``login`` / ``select_client``.

Typed application errors propagate unchanged. Anything else is logged and
converted to ``InternalError`` at this boundary.
"""

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cipher import CipherError, CredentialCipher
from app.core.constants import DirectoryConstants, MovementQueryConstants
from app.core.exceptions import (
    AppException,
    InteractionRequiredError,
    InternalError,
    IssuerNotFoundError,
    NotFoundError,
    SessionInvalidError,
    ValidationError,
)
from app.db.session import transactional
from app.models.banking_directory import BankingDirectory
from app.repositories.banking_directory import BankingDirectoryRepository
from app.schemas.banking import (
    DirectoryCreate,
    ProviderCredentials,
    TransferConfirmRequest,
    TransferPreprocessRequest,
)
from app.schemas.prometeo import (
    AccountMovement,
    BankAccount,
    Client,
    LoginRequest,
    LoginResult,
    SessionRequirement,
    TransferConfirmation,
    TransferInstitution,
    TransferRequest,
)
from app.services.login_service import LoginOrchestrator
from app.services.prometeo_client import PrometeoClient
from app.services.provider_catalog import (
    SANDBOX_AUTH_FIELDS,
    ProviderCatalog,
    validate_credentials,
)
from app.services.session_cache import SessionCache

logger = logging.getLogger(__name__)

_currency_re = re.compile(MovementQueryConstants.CURRENCY_PATTERN)


class UserExistenceChecker(Protocol):
    """Answers whether a user id is known to the system."""

    async def exists(self, id: int) -> bool: ...


@contextmanager
def service_errors(operation: str) -> Iterator[None]:
    """Re-raise typed errors unchanged; hide everything else behind InternalError."""
    try:
        yield
    except AppException:
        raise
    except Exception as e:
        logger.error(f"unexpected error while trying to {operation}: {type(e).__name__}: {e}", exc_info=True)
        raise InternalError() from e


def validate_directory_name(name: str | None) -> str | None:
    """Validate an optional display name. Empty names are stored as null."""
    if not name:
        return None
    if len(name) < DirectoryConstants.NAME_MIN_LENGTH:
        raise ValidationError(
            f"name must be more than {DirectoryConstants.NAME_MIN_LENGTH} characters long"
        )
    if len(name) > DirectoryConstants.NAME_MAX_LENGTH:
        raise ValidationError(
            f"name must be less or equal than {DirectoryConstants.NAME_MAX_LENGTH} characters long"
        )
    return name


def validate_movement_filters(currency: str, start_date: str, end_date: str) -> None:
    """Validate movement query filters (ISO 4217 currency, ``dd/mm/yyyy`` dates)."""
    if not _currency_re.match(currency):
        raise ValidationError(f"'{currency}' is not a valid ISO 4217 currency code")

    parsed = {}
    for field, value in (("start_date", start_date), ("end_date", end_date)):
        try:
            parsed[field] = datetime.strptime(value, MovementQueryConstants.DATE_FORMAT)
        except ValueError:
            raise ValidationError(
                f"'{field}' must use the {MovementQueryConstants.DATE_FORMAT_LABEL} format"
            ) from None

    if parsed["start_date"] > parsed["end_date"]:
        raise ValidationError("'start_date' must not be after 'end_date'")


class DirectoryService:
    """Banking directory operations for one request.

    Args:
        db: Async database session
        client: Upstream API client
        orchestrator: Login state machine
        catalog: Supported providers
        session_cache: Encrypted session-key cache
        credentials_cipher: Cipher bound to the credentials key
        user_checker: Collaborator answering whether a user exists
        sandbox_provider: Provider name accepted without catalog lookup

    Example:
        >>> service = DirectoryService(db, client, orchestrator, catalog, cache, cipher, users)
        >>> accounts = await service.list_accounts(user_id=1, directory_id=3)
    """

    def __init__(
        self,
        db: AsyncSession,
        client: PrometeoClient,
        orchestrator: LoginOrchestrator,
        catalog: ProviderCatalog,
        session_cache: SessionCache,
        credentials_cipher: CredentialCipher,
        user_checker: UserExistenceChecker,
        *,
        sandbox_provider: str = "test",
    ):
        self.db = db
        self.repo = BankingDirectoryRepository(BankingDirectory, db)
        self.client = client
        self.orchestrator = orchestrator
        self.catalog = catalog
        self.session_cache = session_cache
        self.credentials_cipher = credentials_cipher
        self.user_checker = user_checker
        self.sandbox_provider = sandbox_provider

    # ------------------------------------------------------------------
    # Directory lifecycle
    # ------------------------------------------------------------------

    async def setup(self, user_id: int, payload: DirectoryCreate) -> BankingDirectory:
        """Validate and persist access to a provider.

        Validation happens in order, before any side effect: name length,
        provider existence (skipped for the sandbox provider), credential
        fields, owning user.

        Raises:
            ValidationError: Bad name, unknown provider or invalid credentials
            IssuerNotFoundError: The owning user does not exist
        """
        name = validate_directory_name(payload.name)

        if payload.provider == self.sandbox_provider:
            logger.warning("using test provider...")
            validate_credentials(SANDBOX_AUTH_FIELDS, payload.credentials)
        else:
            provider = await self.catalog.find(payload.provider)
            if provider is None:
                raise ValidationError(f"no provider found with name '{payload.provider}'")
            logger.debug(
                f"specified provider is '{provider.name}' - {provider.bank.name} [{provider.bank.code}]..."
            )
            validate_credentials(provider.auth_fields, payload.credentials)

        if not await self.user_checker.exists(user_id):
            logger.error(f'user with id "{user_id}" does not exist, aborting...')
            raise IssuerNotFoundError()

        with service_errors("save provider credentials"):
            try:
                encrypted = self.credentials_cipher.encrypt(payload.credentials.model_dump_json())
            except CipherError as e:
                logger.error(f"error while encrypting provider credentials: {e}")
                raise InternalError() from e

            async with transactional(self.db):
                directory = await self.repo.create(
                    obj_in={
                        "user_id": user_id,
                        "name": name,
                        "provider_name": payload.provider,
                        "encrypted_credentials": encrypted,
                    }
                )

        logger.info(f"User {user_id} set up directory {directory.id} ({payload.provider})")
        return directory

    async def rename(self, user_id: int, directory_id: int, name: str | None) -> BankingDirectory:
        name = validate_directory_name(name)
        directory = await self.get(user_id, directory_id)

        async with transactional(self.db):
            directory = await self.repo.update(db_obj=directory, obj_in={"name": name})
        return directory

    async def delete(self, user_id: int, directory_id: int) -> None:
        """Delete a directory owned by the user.

        Raises:
            NotFoundError: No directory with that id belongs to the user
        """
        await self.get(user_id, directory_id)

        async with transactional(self.db):
            await self.repo.delete_for_user(user_id, directory_id)

        await self.session_cache.invalidate(user_id, directory_id)
        logger.info(f"User {user_id} deleted directory {directory_id}")

    async def get(self, user_id: int, directory_id: int) -> BankingDirectory:
        directory = await self.repo.get_for_user(user_id, directory_id)
        if directory is None:
            raise NotFoundError("specified directory was not found")
        return directory

    async def list_directories(self, user_id: int) -> list[BankingDirectory]:
        return await self.repo.get_by_user_id(user_id)

    async def count_directories(self, user_id: int) -> int:
        return await self.repo.count_by_user_id(user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _decrypt_credentials(self, directory: BankingDirectory) -> ProviderCredentials:
        try:
            raw = self.credentials_cipher.decrypt(directory.encrypted_credentials)
            credentials = ProviderCredentials.model_validate_json(raw)
        except (CipherError, PydanticValidationError) as e:
            logger.warning(f"encrypted credentials of directory {directory.id} are not valid: {e}")
            raise InternalError() from e

        if not credentials.username or not credentials.password:
            logger.warning(f"encrypted credentials of directory {directory.id} are not valid, aborting...")
            raise InternalError()
        return credentials

    def _login_request(self, directory: BankingDirectory, otp: str | None = None) -> LoginRequest:
        credentials = self._decrypt_credentials(directory)
        extra = dict(credentials.additional_fields)
        return LoginRequest(
            provider=directory.provider_name,
            username=credentials.username,
            password=credentials.password,
            type=extra.pop("type", None),
            document_number=extra.pop("document_number", None),
            otp=otp,
            extra_fields=extra,
        )

    async def acquire_session(self, user_id: int, directory_id: int) -> str:
        """Return a usable session key, from cache or through a fresh login.

        Raises:
            NotFoundError: Unknown directory
            InteractionRequiredError: The login needs an OTP or a client selection
        """
        cached = await self.session_cache.get(user_id, directory_id)
        if cached:
            return cached

        directory = await self.get(user_id, directory_id)
        with service_errors("log in to the banking provider"):
            result = await self.orchestrator.login(self._login_request(directory))

        if result.session.requires != SessionRequirement.NOTHING:
            logger.info(
                f"login for directory {directory_id} requires '{result.session.requires.value}', "
                f"session cannot be acquired automatically"
            )
            raise InteractionRequiredError(result.session.requires.value)

        await self.session_cache.put(user_id, directory_id, result.session.key)
        return result.session.key

    async def login(self, user_id: int, directory_id: int, otp: str | None = None) -> LoginResult:
        """Log in explicitly, returning whatever the login still requires.

        Completed sessions are cached like automatically acquired ones.
        """
        directory = await self.get(user_id, directory_id)
        with service_errors("log in to the banking provider"):
            result = await self.orchestrator.login(self._login_request(directory, otp))

        if result.session.requires == SessionRequirement.NOTHING:
            await self.session_cache.put(user_id, directory_id, result.session.key)
        return result

    async def get_clients(
        self, user_id: int, directory_id: int, session_key: str | None = None
    ) -> list[Client]:
        async with self._session(user_id, directory_id, session_key) as key:
            return await self.client.get_clients(key)

    async def select_client(self, user_id: int, directory_id: int, key: str, client: str) -> str:
        """Select a client for a session and cache the resulting key.

        Raises:
            NotFoundError: Unknown directory, or the client is not offered by the session
        """
        await self.get(user_id, directory_id)
        with service_errors("select a client"):
            clients = await self.client.get_clients(key)
            if not any(c.id == client for c in clients):
                raise NotFoundError(f"specified client '{client}' does not exist")
            new_key = await self.client.select_client(key, client)

        await self.session_cache.put(user_id, directory_id, new_key)
        return new_key

    async def logout(self, user_id: int, directory_id: int, session_key: str | None = None) -> bool:
        """End the upstream session and drop the cached key.

        Returns False when there was no session to end.
        """
        await self.get(user_id, directory_id)
        key = session_key or await self.session_cache.get(user_id, directory_id)
        await self.session_cache.invalidate(user_id, directory_id)
        if not key:
            return False

        with service_errors("log out from the banking provider"):
            return await self.client.logout(key)

    # ------------------------------------------------------------------
    # Upstream operations
    # ------------------------------------------------------------------

    def _session(self, user_id: int, directory_id: int, session_key: str | None) -> "_SessionScope":
        return _SessionScope(self, user_id, directory_id, session_key)

    async def list_accounts(
        self, user_id: int, directory_id: int, session_key: str | None = None
    ) -> list[BankAccount]:
        async with self._session(user_id, directory_id, session_key) as key:
            return await self.client.list_accounts(key)

    async def list_movements(
        self,
        user_id: int,
        directory_id: int,
        account_number: str,
        *,
        currency: str,
        start_date: str,
        end_date: str,
        session_key: str | None = None,
    ) -> list[AccountMovement]:
        validate_movement_filters(currency, start_date, end_date)
        async with self._session(user_id, directory_id, session_key) as key:
            return await self.client.list_movements(
                key,
                account_number,
                currency=currency,
                start_date=start_date,
                end_date=end_date,
            )

    async def list_institutions(
        self, user_id: int, directory_id: int, session_key: str | None = None
    ) -> list[TransferInstitution]:
        async with self._session(user_id, directory_id, session_key) as key:
            return await self.client.list_institutions(key)

    async def request_transfer(
        self,
        user_id: int,
        directory_id: int,
        payload: TransferPreprocessRequest,
        session_key: str | None = None,
    ) -> TransferRequest:
        async with self._session(user_id, directory_id, session_key) as key:
            return await self.client.preprocess_transfer(key, payload.to_form())

    async def confirm_transfer(
        self,
        user_id: int,
        directory_id: int,
        payload: TransferConfirmRequest,
        session_key: str | None = None,
    ) -> TransferConfirmation:
        async with self._session(user_id, directory_id, session_key) as key:
            result = await self.client.confirm_transfer(key, payload.to_form())
        logger.info(
            f"User {user_id} confirmed transfer request {payload.request_id} "
            f"on directory {directory_id} (success: {result.success})"
        )
        return result


class _SessionScope:
    """Resolves the session key for one upstream operation.

    On exit, an invalid-key answer drops the cached key (when the key came
    from the cache or a fresh login) so the next call logs in again, and
    unclassified errors become ``InternalError``.
    """

    def __init__(
        self,
        service: DirectoryService,
        user_id: int,
        directory_id: int,
        session_key: str | None,
    ):
        self.service = service
        self.user_id = user_id
        self.directory_id = directory_id
        self.session_key = session_key

    async def __aenter__(self) -> str:
        if self.session_key:
            await self.service.get(self.user_id, self.directory_id)
            return self.session_key
        return await self.service.acquire_session(self.user_id, self.directory_id)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            return False

        if isinstance(exc, SessionInvalidError) and not self.session_key:
            await self.service.session_cache.invalidate(self.user_id, self.directory_id)

        if isinstance(exc, AppException):
            return False

        if isinstance(exc, Exception):
            logger.error(
                f"unexpected error during a banking operation "
                f"(directory: {self.directory_id}): {type(exc).__name__}: {exc}",
                exc_info=exc,
            )
            raise InternalError() from exc
        return False
