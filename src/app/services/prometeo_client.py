"""HTTP client for the Prometeo banking aggregation API.

All calls go through one retry wrapper: only HTTP 502 is considered transient
and retried with capped exponential backoff. Every other non-2xx response is
surfaced immediately, unless its JSON body carries a typed business error
(``{"status": "error", "message": "Invalid key"}``), which is parsed and mapped
to an exception from ``app.core.exceptions``.

The client keeps no state besides the shared ``httpx.AsyncClient``; caching and
persistence belong to the callers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.constants import PrometeoConstants as C
from app.core.exceptions import (
    DeadlineExceededError,
    ExternalAPIError,
    InternalError,
    NotFoundError,
    SessionInvalidError,
)
from app.schemas.prometeo import (
    AccountMovement,
    BankAccount,
    Client,
    LoginRequest,
    Provider,
    ProviderSummary,
    TransferConfirmation,
    TransferInstitution,
    TransferRequest,
)

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def redact(payload: Any) -> Any:
    """Upstream payload safe for logging: the session key is masked."""
    if isinstance(payload, dict) and "key" in payload:
        return {**payload, "key": "***"}
    return payload


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for upstream calls.

    The first retry waits ``initial_backoff_ms``; each following wait doubles,
    capped at ``max_backoff_ms``. ``max_attempts`` counts every call made,
    including the first one.
    """

    max_attempts: int = 5
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 3000

    def starting_at(self, initial_backoff_ms: int) -> "RetryPolicy":
        return replace(self, initial_backoff_ms=initial_backoff_ms)


class TransientUpstreamError(Exception):
    """Upstream answered 502; the call may be retried."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"upstream answered {response.status_code}")


class PrometeoClient:
    """Async client for the Prometeo API.

    Args:
        http_client: Shared client, configured with the API base URL
        api_key: Value for the ``X-API-Key`` header
        retry_policy: Default backoff for 502 responses
        sleep: Coroutine used to wait between attempts (injectable for tests)

    Example:
        >>> client = PrometeoClient(http, settings.PROMETEO_API_KEY)
        >>> accounts = await client.list_accounts(session_key)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        retry_policy: RetryPolicy | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._http = http_client
        self._api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None,
        data: dict[str, str] | None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json", "X-API-Key": self._api_key}
        response = await self._http.request(
            method, path, params=params, data=data, headers=headers
        )
        if response.status_code == C.RETRYABLE_STATUS_CODE:
            raise TransientUpstreamError(response)
        return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        """Send a request with the 502 retry policy and decode its JSON body.

        Raises:
            DeadlineExceededError: Every attempt answered 502, or the transport timed out
            ExternalAPIError: The upstream could not be reached
            InternalError: Unexpected status without a typed body, or malformed JSON
        """
        policy = policy or self.retry_policy

        def log_retry(retry_state: RetryCallState) -> None:
            backoff_ms = int(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
            logger.warning(
                f"{operation} failed with status {C.RETRYABLE_STATUS_CODE}, trying again in "
                f"{backoff_ms}ms... ({retry_state.attempt_number} attempts)"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.initial_backoff_ms / 1000,
                max=policy.max_backoff_ms / 1000,
            ),
            retry=retry_if_exception_type(TransientUpstreamError),
            before_sleep=log_retry,
            sleep=self._sleep,
        )

        try:
            response = await retrying(self._send, method, path, params, data)
        except RetryError as e:
            logger.error(f"{operation} failed after {policy.max_attempts} attempts")
            raise DeadlineExceededError() from e
        except httpx.TimeoutException as e:
            logger.error(f"{operation} timed out: {e}")
            raise DeadlineExceededError() from e
        except httpx.TransportError as e:
            logger.error(f"{operation} could not reach the Prometeo API: {e}")
            raise ExternalAPIError() from e

        return self._decode(response, operation)

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            logger.error(
                f"{operation} returned a non-JSON body with status {response.status_code}: "
                f"{response.text[:500]}"
            )
            raise InternalError() from e

        if not isinstance(payload, dict) or "status" not in payload:
            logger.error(f"{operation} returned an unexpected payload: {redact(payload)!r}")
            raise InternalError()

        if not response.is_success:
            if payload.get("status") not in C.FAILURE_STATUSES:
                logger.error(
                    f"{operation} failed with http status {response.status_code}: "
                    f"{redact(payload)}"
                )
                raise InternalError()
            # Typed business error; callers decide what it means
            logger.debug(
                f"{operation} failed with http status {response.status_code}: {redact(payload)}"
            )

        return payload

    @staticmethod
    def _raise_for_error(payload: dict[str, Any], operation: str) -> None:
        """Map ``{"status": "error"}`` payloads to typed exceptions."""
        if payload.get("status") != C.STATUS_ERROR:
            return

        message = payload.get("message")
        if message == C.MESSAGE_INVALID_KEY:
            raise SessionInvalidError()

        if message in (C.MESSAGE_MISSING_API_KEY, C.MESSAGE_API_KEY_NOT_FOUND):
            logger.error("Prometeo API key is missing or invalid, check PROMETEO_API_KEY")
            raise InternalError()

        logger.error(f"{operation} failed with an unhandled upstream error: {redact(payload)}")
        raise InternalError()

    @staticmethod
    def _field(payload: dict[str, Any], name: str, operation: str) -> Any:
        if payload.get("status") != C.STATUS_SUCCESS or name not in payload:
            logger.error(f"{operation} returned an unexpected payload: {redact(payload)!r}")
            raise InternalError()
        return payload[name]

    @staticmethod
    def _parse(model: Any, raw: Any, operation: str) -> Any:
        try:
            if isinstance(raw, list):
                return [model.model_validate(item) for item in raw]
            return model.model_validate(raw)
        except ValueError as e:
            logger.error(f"{operation} returned a payload that does not match {model.__name__}: {e}")
            raise InternalError() from e

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def list_providers(self) -> list[ProviderSummary]:
        """List every provider the API key has access to."""
        payload = await self._request("GET", "/provider/", operation="list providers")
        self._raise_for_error(payload, "list providers")
        raw = self._field(payload, "providers", "list providers")
        return self._parse(ProviderSummary, raw, "list providers")

    async def get_provider(self, code: str) -> Provider:
        """Get a provider's details, including its login fields."""
        operation = f"get provider details ({code})"
        payload = await self._request("GET", f"/provider/{code}/", operation=operation)
        self._raise_for_error(payload, operation)
        return self._parse(Provider, self._field(payload, "provider", operation), operation)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def login(self, request: LoginRequest) -> dict[str, Any]:
        """Log in to a provider.

        Returns the raw upstream payload; its ``status`` decides the next step
        (see ``LoginOrchestrator``). Login is never retried on anything but 502.
        """
        return await self._request(
            "POST", "/login/", operation="login", data=request.to_form()
        )

    async def logout(self, key: str) -> bool:
        """End an upstream session. Returns whether the upstream confirmed it."""
        payload = await self._request("GET", "/logout/", operation="logout", params={"key": key})
        self._raise_for_error(payload, "logout")
        return payload.get("status") == C.STATUS_LOGGED_OUT

    async def get_clients(self, key: str) -> list[Client]:
        """List the clients selectable for a session.

        Unknown upstream errors yield an empty list rather than a failure.
        """
        payload = await self._request(
            "GET", "/client/", operation="get clients", params={"key": key}
        )
        if payload.get("status") == C.STATUS_ERROR:
            message = payload.get("message")
            if message in (C.MESSAGE_INVALID_KEY, C.MESSAGE_MISSING_API_KEY, C.MESSAGE_API_KEY_NOT_FOUND):
                self._raise_for_error(payload, "get clients")
            logger.warning(f"get clients failed upstream, no clients returned: {redact(payload)}")
            return []

        raw = self._field(payload, "clients", "get clients")
        if not isinstance(raw, dict):
            logger.error(f"get clients returned an unexpected payload: {redact(payload)!r}")
            raise InternalError()
        return [Client(id=client_id, name=name) for client_id, name in raw.items()]

    async def select_client(self, key: str, client: str) -> str:
        """Select the client for a session.

        Returns:
            The session key to use from now on. Some providers issue a new one;
            otherwise the given key stays valid.
        """
        payload = await self._request(
            "GET",
            f"/client/{client}/",
            operation="select client",
            params={"key": key},
            policy=self.retry_policy.starting_at(C.SELECT_CLIENT_INITIAL_BACKOFF_MS),
        )
        if payload.get("status") == C.STATUS_SUCCESS:
            return payload.get("key") or key

        if payload.get("message") == C.MESSAGE_WRONG_CLIENT:
            raise NotFoundError(f"specified client '{client}' does not exist")

        self._raise_for_error(payload, "select client")
        logger.error(f"select client returned an unexpected payload: {redact(payload)!r}")
        raise InternalError()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self, key: str) -> list[BankAccount]:
        payload = await self._request(
            "GET", "/account/", operation="list accounts", params={"key": key}
        )
        self._raise_for_error(payload, "list accounts")
        raw = self._field(payload, "accounts", "list accounts")
        return self._parse(BankAccount, raw, "list accounts")

    async def list_movements(
        self,
        key: str,
        account_number: str,
        *,
        currency: str,
        start_date: str,
        end_date: str,
    ) -> list[AccountMovement]:
        """List movements of an account; dates use the ``dd/mm/yyyy`` format."""
        payload = await self._request(
            "GET",
            f"/account/{account_number}/movement/",
            operation="list movements",
            params={
                "key": key,
                "currency": currency,
                "date_start": start_date,
                "date_end": end_date,
            },
        )
        self._raise_for_error(payload, "list movements")
        raw = self._field(payload, "movements", "list movements")
        return self._parse(AccountMovement, raw, "list movements")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def list_institutions(self, key: str) -> list[TransferInstitution]:
        """List destination institutions available for transfers."""
        payload = await self._request(
            "GET",
            "/transfer/destinations",
            operation="list transfer institutions",
            params={"key": key},
        )
        self._raise_for_error(payload, "list transfer institutions")
        raw = self._field(payload, "destinations", "list transfer institutions")
        return self._parse(TransferInstitution, raw, "list transfer institutions")

    async def preprocess_transfer(self, key: str, form: dict[str, str]) -> TransferRequest:
        payload = await self._request(
            "POST",
            "/transfer/preprocess",
            operation="preprocess transfer",
            params={"key": key},
            data=form,
        )
        self._raise_for_error(payload, "preprocess transfer")
        raw = self._field(payload, "result", "preprocess transfer")
        return self._parse(TransferRequest, raw, "preprocess transfer")

    async def confirm_transfer(self, key: str, form: dict[str, str]) -> TransferConfirmation:
        """Execute a preprocessed transfer.

        Like every other call, only a 502 response is retried; any other
        failure is surfaced at once.
        """
        payload = await self._request(
            "POST",
            "/transfer/confirm",
            operation="confirm transfer",
            params={"key": key},
            data=form,
        )
        self._raise_for_error(payload, "confirm transfer")
        raw = payload.get("transfer") or payload.get("result")
        if payload.get("status") != C.STATUS_SUCCESS or not isinstance(raw, dict):
            logger.error(f"confirm transfer returned an unexpected payload: {redact(payload)!r}")
            raise InternalError()
        return self._parse(TransferConfirmation, raw, "confirm transfer")

