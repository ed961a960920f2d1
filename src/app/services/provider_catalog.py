"""Catalog of supported banking providers and per-provider credential rules.

The catalog is derived from the upstream provider listing: providers of the
configured country whose code marks them as corporate (``corp``, ``bcp`` or
``smes``) are kept, and their details are fetched concurrently. A detail
request that fails is logged and skipped. The resulting list is cached in Redis
as JSON; cache errors never fail the request.
"""

import asyncio
import json
import logging

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from app.core.constants import CredentialConstants, PrometeoConstants
from app.core.exceptions import InternalError, ValidationError
from app.schemas.banking import ProviderCredentials
from app.schemas.prometeo import Provider, ProviderAuthField
from app.services.prometeo_client import PrometeoClient
from app.services.session_cache import KeyValueStore

logger = logging.getLogger(__name__)

_providers_adapter = TypeAdapter(list[Provider])

# The sandbox provider is not part of the upstream listing
SANDBOX_AUTH_FIELDS = (
    ProviderAuthField(name="username", type="text"),
    ProviderAuthField(name="password", type="password"),
)


class ProviderCatalog:
    """Cached view of the providers this gateway supports.

    Args:
        client: Upstream API client
        store: Redis connection, or None to always query upstream
        country: ISO country code providers are filtered by
        ttl_seconds: Lifetime of the cached catalog
    """

    def __init__(
        self,
        client: PrometeoClient,
        store: KeyValueStore | None,
        *,
        country: str = "PE",
        ttl_seconds: int = 60 * 60 * 12,
    ):
        self.client = client
        self._store = store
        self.country = country
        self.ttl_seconds = ttl_seconds

    async def list_providers(self) -> list[Provider]:
        """Return the supported providers, from cache when possible.

        Raises:
            InternalError: No provider could be retrieved
        """
        cached = await self._read_cache()
        if cached:
            return cached

        providers = await self._fetch_providers()
        if not providers:
            logger.error("no providers could be retrieved from the Prometeo API")
            raise InternalError()

        await self._write_cache(providers)
        return providers

    async def find(self, name: str) -> Provider | None:
        """Find a provider by its name (the value used to log in)."""
        for provider in await self.list_providers():
            if provider.name == name:
                return provider
        return None

    async def _fetch_providers(self) -> list[Provider]:
        summaries = await self.client.list_providers()
        selected = [
            summary
            for summary in summaries
            if summary.country == self.country
            and any(marker in summary.code for marker in PrometeoConstants.CORPORATE_CODE_MARKERS)
        ]
        logger.debug(f"{len(selected)} provider details will be queried...")

        results = await asyncio.gather(
            *(self.client.get_provider(summary.code) for summary in selected),
            return_exceptions=True,
        )

        providers: list[Provider] = []
        for summary, result in zip(selected, results):
            if isinstance(result, BaseException):
                logger.error(f"error getting provider details (provider code: {summary.code}): {result}")
                continue
            providers.append(result)
        return providers

    async def _read_cache(self) -> list[Provider] | None:
        if self._store is None:
            return None
        try:
            raw = await self._store.get(PrometeoConstants.PROVIDERS_CACHE_KEY)
        except (RedisError, OSError) as e:
            logger.warning(f"error reading cached providers: {e}")
            return None
        if not raw:
            return None
        try:
            return _providers_adapter.validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"cached providers are not valid, refreshing: {e}")
            return None

    async def _write_cache(self, providers: list[Provider]) -> None:
        if self._store is None:
            return
        value = json.dumps([provider.model_dump(mode="json") for provider in providers])
        try:
            await self._store.setex(PrometeoConstants.PROVIDERS_CACHE_KEY, self.ttl_seconds, value)
        except (RedisError, OSError) as e:
            logger.warning(f"error caching Prometeo providers: {e}")


def _check_length(field: str, value: str, min_length: int, max_length: int) -> None:
    if not value:
        raise ValidationError(f"'{field}' is required")
    if len(value) < min_length:
        raise ValidationError(f"'{field}' must be at least {min_length} characters long")
    if len(value) > max_length:
        raise ValidationError(f"'{field}' must be at most {max_length} characters long")


def validate_credentials(
    auth_fields: list[ProviderAuthField] | tuple[ProviderAuthField, ...],
    credentials: ProviderCredentials,
) -> None:
    """Validate submitted credentials against a provider's login fields.

    ``username`` and ``password`` are always required. Every other field the
    provider declares as mandatory and non-interactive must be present in
    ``additional_fields``; interactive fields (such as an OTP) are supplied at
    login time and cannot be stored. Fields the provider does not declare are
    rejected.

    Raises:
        ValidationError: On the first offending field
    """
    _check_length(
        "username",
        credentials.username,
        CredentialConstants.USERNAME_MIN_LENGTH,
        CredentialConstants.USERNAME_MAX_LENGTH,
    )
    _check_length(
        "password",
        credentials.password,
        CredentialConstants.PASSWORD_MIN_LENGTH,
        CredentialConstants.PASSWORD_MAX_LENGTH,
    )

    declared = {field.name: field for field in auth_fields if field.name not in CredentialConstants.BASE_FIELDS}

    for name, value in credentials.additional_fields.items():
        field = declared.get(name)
        if field is None:
            raise ValidationError(f"'{name}' is not a valid field for this provider")
        if field.interactive:
            raise ValidationError(f"'{name}' is requested at login and cannot be stored")
        if not value:
            raise ValidationError(f"'{name}' must not be empty")

    for name, field in declared.items():
        if field.optional or field.interactive:
            continue
        if name not in credentials.additional_fields:
            raise ValidationError(f"'{name}' is required")
