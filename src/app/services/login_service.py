"""Login state machine for the Prometeo API.

A single upstream login call ends in one of several outcomes; this module
normalizes them into a ``LoginResult`` or a typed exception. Business outcomes
are handled once and never retried: only the literal 502 case is retried, and
that happens inside ``PrometeoClient``.

Outcomes:
    logged_in                          -> key, requires nothing
    select_client                      -> key + clients (one get_clients call)
    interaction_required / otp         -> key, requires otp_code
    interaction_required / questions   -> UnimplementedError
    wrong_credentials                  -> WrongCredentialsError
    error "Unauthorized provider"      -> ProviderNotAuthorizedError
    anything else                      -> InternalError
"""

import logging
from typing import Any

from app.core.constants import PrometeoConstants as C
from app.core.exceptions import (
    InternalError,
    ProviderNotAuthorizedError,
    UnimplementedError,
    WrongCredentialsError,
)
from app.schemas.prometeo import LoginRequest, LoginResult, LoginSession, SessionRequirement
from app.services.prometeo_client import PrometeoClient, redact

logger = logging.getLogger(__name__)


class LoginOrchestrator:
    """Drives one login attempt against the upstream API.

    Example:
        >>> orchestrator = LoginOrchestrator(prometeo_client)
        >>> result = await orchestrator.login(LoginRequest(provider="test", ...))
        >>> result.session.requires
        <SessionRequirement.NOTHING: 'nothing'>
    """

    def __init__(self, client: PrometeoClient):
        self.client = client

    async def login(self, request: LoginRequest) -> LoginResult:
        payload = await self.client.login(request)
        status = payload.get("status")

        if status == C.STATUS_WRONG_CREDENTIALS:
            logger.info(f"provider '{request.provider}' rejected the credentials")
            raise WrongCredentialsError()

        if status == C.STATUS_ERROR:
            if payload.get("message") == C.MESSAGE_UNAUTHORIZED_PROVIDER:
                logger.warning(f"provider '{request.provider}' is not authorized for this API key")
                raise ProviderNotAuthorizedError(
                    f"provider '{request.provider}' is not authorized"
                )
            logger.error(f"login failed with an unhandled upstream error: {redact(payload)}")
            raise InternalError()

        key = self._session_key(payload)

        if status == C.STATUS_LOGGED_IN:
            return LoginResult(session=LoginSession(key=key, requires=SessionRequirement.NOTHING))

        if status == C.STATUS_SELECT_CLIENT:
            clients = await self.client.get_clients(key)
            return LoginResult(
                session=LoginSession(key=key, requires=SessionRequirement.SPECIFY_CLIENT),
                clients=clients,
            )

        if status == C.STATUS_INTERACTION_REQUIRED:
            field = payload.get("field")
            if field == C.FIELD_OTP:
                return LoginResult(
                    session=LoginSession(key=key, requires=SessionRequirement.OTP_CODE)
                )
            if field == C.FIELD_PERSONAL_QUESTIONS:
                raise UnimplementedError(
                    "you need to answer a personal question to continue but is not supported yet"
                )
            logger.error(f"login requires an unknown interaction: {field!r}")
            raise InternalError()

        logger.error(f"login returned an unexpected status: {redact(payload)!r}")
        raise InternalError()

    @staticmethod
    def _session_key(payload: dict[str, Any]) -> str:
        key = payload.get("key")
        if not isinstance(key, str) or not key:
            logger.error(f"login with status '{payload.get('status')}' did not include a session key")
            raise InternalError()

        if len(key) != C.SESSION_KEY_LENGTH:
            logger.warning(
                f"session key has {len(key)} characters, expected {C.SESSION_KEY_LENGTH}"
            )
        return key
