"""Tests for the banking directory service."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    InteractionRequiredError,
    InternalError,
    IssuerNotFoundError,
    NotFoundError,
    SessionInvalidError,
    ValidationError,
    WrongCredentialsError,
)
from app.models.banking_directory import BankingDirectory
from app.schemas.banking import (
    DirectoryCreate,
    ProviderCredentials,
    TransferConfirmRequest,
    TransferPreprocessRequest,
)
from app.schemas.prometeo import SessionRequirement

SESSION_KEY = "0123456789abcdef0123456789abcdef"

SANDBOX_CREDENTIALS = ProviderCredentials(username="12345678", password="gfdsa")

ACCOUNTS = {
    "status": "success",
    "accounts": [
        {"id": "1", "name": "Cuenta Corriente", "number": "191-1", "currency": "PEN", "balance": 10.0},
    ],
}


def logged_in(key: str = SESSION_KEY) -> dict:
    return {"status": "logged_in", "key": key}


class TestSetup:
    async def test_setup_with_sandbox_provider(self, directory_service, test_user, test_db, credentials_cipher):
        directory = await directory_service.setup(
            test_user.id, DirectoryCreate(provider="test", credentials=SANDBOX_CREDENTIALS)
        )

        assert directory.id is not None
        assert directory.name is None
        assert directory.provider_name == "test"

        stored = (await test_db.execute(select(BankingDirectory))).scalar_one()
        assert "gfdsa" not in stored.encrypted_credentials
        decrypted = ProviderCredentials.model_validate_json(
            credentials_cipher.decrypt(stored.encrypted_credentials)
        )
        assert decrypted == SANDBOX_CREDENTIALS

    @pytest.mark.parametrize("name", ["abcd", "x" * 90])
    async def test_setup_accepts_name_bounds(self, directory_service, test_user, name):
        directory = await directory_service.setup(
            test_user.id, DirectoryCreate(name=name, provider="test", credentials=SANDBOX_CREDENTIALS)
        )

        assert directory.name == name

    @pytest.mark.parametrize("name", ["abc", "x" * 91])
    async def test_setup_rejects_bad_names(self, directory_service, test_user, name, upstream):
        with pytest.raises(ValidationError):
            await directory_service.setup(
                test_user.id, DirectoryCreate(name=name, provider="test", credentials=SANDBOX_CREDENTIALS)
            )

        assert upstream.calls == []

    async def test_setup_rejects_unknown_provider(self, directory_service, test_user, upstream, test_db):
        upstream.on_json(
            "GET", "/provider/", {"status": "success", "providers": [{"code": "bcp_corp", "country": "PE", "name": "bcp_corp"}]}
        )
        upstream.on_json(
            "GET",
            "/provider/bcp_corp/",
            {
                "status": "success",
                "provider": {
                    "name": "bcp_corp",
                    "auth_fields": [{"name": "username"}, {"name": "password"}],
                    "bank": {"code": "BCP", "name": "Banco de Credito"},
                },
            },
        )

        with pytest.raises(ValidationError, match="no provider found"):
            await directory_service.setup(
                test_user.id, DirectoryCreate(provider="nope", credentials=SANDBOX_CREDENTIALS)
            )

        assert (await test_db.execute(select(BankingDirectory))).first() is None

    async def test_setup_rejects_invalid_credentials(self, directory_service, test_user):
        with pytest.raises(ValidationError):
            await directory_service.setup(
                test_user.id,
                DirectoryCreate(provider="test", credentials=ProviderCredentials(username="ab", password="gfdsa")),
            )

    async def test_setup_requires_existing_user(self, directory_service):
        with pytest.raises(IssuerNotFoundError):
            await directory_service.setup(
                999, DirectoryCreate(provider="test", credentials=SANDBOX_CREDENTIALS)
            )


class TestLifecycle:
    @pytest.mark.parametrize("name", ["abcd", "x" * 90])
    async def test_rename_accepts_bounds(self, directory_service, test_user, test_directory, name):
        renamed = await directory_service.rename(test_user.id, test_directory.id, name)

        assert renamed.name == name

    @pytest.mark.parametrize("name", ["abc", "x" * 91])
    async def test_rename_rejects_bad_lengths(self, directory_service, test_user, test_directory, name):
        with pytest.raises(ValidationError):
            await directory_service.rename(test_user.id, test_directory.id, name)

    async def test_rename_to_null_clears_name(self, directory_service, test_user, test_directory):
        renamed = await directory_service.rename(test_user.id, test_directory.id, None)

        assert renamed.name is None

    async def test_rename_of_foreign_directory_is_not_found(
        self, directory_service, other_user, test_directory
    ):
        with pytest.raises(NotFoundError):
            await directory_service.rename(other_user.id, test_directory.id, "stolen")

    async def test_delete(self, directory_service, test_user, test_directory):
        await directory_service.delete(test_user.id, test_directory.id)

        assert await directory_service.list_directories(test_user.id) == []

    async def test_delete_of_foreign_directory_is_not_found(
        self, directory_service, test_user, other_user, test_directory
    ):
        owner_id, stranger_id, directory_id = test_user.id, other_user.id, test_directory.id

        with pytest.raises(NotFoundError, match="specified directory was not found"):
            await directory_service.delete(stranger_id, directory_id)

        assert [d.id for d in await directory_service.list_directories(owner_id)] == [directory_id]

    async def test_delete_of_missing_directory_is_not_found(self, directory_service, test_user):
        with pytest.raises(NotFoundError):
            await directory_service.delete(test_user.id, 12345)

    async def test_delete_drops_cached_session(self, directory_service, session_cache, test_user, test_directory):
        await session_cache.put(test_user.id, test_directory.id, SESSION_KEY)

        await directory_service.delete(test_user.id, test_directory.id)

        assert await session_cache.get(test_user.id, test_directory.id) is None

    async def test_list_and_count_are_per_user(self, directory_service, test_user, other_user, test_directory):
        assert await directory_service.count_directories(test_user.id) == 1
        assert await directory_service.count_directories(other_user.id) == 0
        assert await directory_service.list_directories(other_user.id) == []


class TestSessionAcquisition:
    async def test_fresh_login_is_cached(self, directory_service, session_cache, upstream, test_user, test_directory):
        upstream.on_json("POST", "/login/", logged_in())
        upstream.on_json("GET", "/account/", ACCOUNTS)

        await directory_service.list_accounts(test_user.id, test_directory.id)
        await directory_service.list_accounts(test_user.id, test_directory.id)

        assert len(upstream.calls_to("POST", "/login/")) == 1
        assert upstream.form(upstream.calls_to("POST", "/login/")[0]) == {
            "provider": "test",
            "username": "12345678",
            "password": "gfdsa",
        }
        assert await session_cache.get(test_user.id, test_directory.id) == SESSION_KEY

    async def test_cached_key_skips_login(self, directory_service, session_cache, upstream, test_user, test_directory):
        await session_cache.put(test_user.id, test_directory.id, "c" * 32)
        upstream.on_json("GET", "/account/", ACCOUNTS)

        await directory_service.list_accounts(test_user.id, test_directory.id)

        assert upstream.calls_to("POST", "/login/") == []
        assert upstream.calls[0].url.params["key"] == "c" * 32

    async def test_explicit_session_key_is_used(self, directory_service, upstream, test_user, test_directory):
        upstream.on_json("GET", "/account/", ACCOUNTS)

        await directory_service.list_accounts(test_user.id, test_directory.id, session_key="e" * 32)

        assert upstream.calls_to("POST", "/login/") == []
        assert upstream.calls[0].url.params["key"] == "e" * 32

    async def test_explicit_key_still_requires_ownership(
        self, directory_service, upstream, other_user, test_directory
    ):
        with pytest.raises(NotFoundError):
            await directory_service.list_accounts(other_user.id, test_directory.id, session_key="e" * 32)

        assert upstream.calls == []

    async def test_login_requiring_interaction_is_reported(
        self, directory_service, session_cache, upstream, test_user, test_directory
    ):
        upstream.on_json("POST", "/login/", {"status": "interaction_required", "field": "otp", "key": SESSION_KEY})

        with pytest.raises(InteractionRequiredError) as exc_info:
            await directory_service.list_accounts(test_user.id, test_directory.id)

        assert exc_info.value.requires == "otp_code"
        assert upstream.calls_to("GET", "/account/") == []
        assert await session_cache.get(test_user.id, test_directory.id) is None

    async def test_wrong_credentials_propagate(self, directory_service, upstream, test_user, test_directory):
        upstream.on_json("POST", "/login/", {"status": "wrong_credentials"})

        with pytest.raises(WrongCredentialsError):
            await directory_service.list_accounts(test_user.id, test_directory.id)

    async def test_undecryptable_credentials_are_internal(
        self, directory_service, upstream, test_user, test_directory, test_db
    ):
        test_directory.encrypted_credentials = "garbage"
        await test_db.commit()

        with pytest.raises(InternalError):
            await directory_service.list_accounts(test_user.id, test_directory.id)

        assert upstream.calls == []

    async def test_invalid_cached_key_is_dropped(
        self, directory_service, session_cache, upstream, test_user, test_directory
    ):
        await session_cache.put(test_user.id, test_directory.id, "c" * 32)
        upstream.on_error("GET", "/account/", "Invalid key", status_code=401)

        with pytest.raises(SessionInvalidError):
            await directory_service.list_accounts(test_user.id, test_directory.id)

        assert await session_cache.get(test_user.id, test_directory.id) is None


class TestExplicitLogin:
    async def test_login_returns_clients(self, directory_service, session_cache, upstream, test_user, test_directory):
        upstream.on_json("POST", "/login/", {"status": "select_client", "key": SESSION_KEY})
        upstream.on_json("GET", "/client/", {"status": "success", "clients": {"0": "ACME SAC"}})

        result = await directory_service.login(test_user.id, test_directory.id)

        assert result.session.requires == SessionRequirement.SPECIFY_CLIENT
        assert [c.name for c in result.clients] == ["ACME SAC"]
        assert await session_cache.get(test_user.id, test_directory.id) is None

    async def test_login_with_otp(self, directory_service, session_cache, upstream, test_user, test_directory):
        upstream.on_json("POST", "/login/", logged_in())

        result = await directory_service.login(test_user.id, test_directory.id, otp="123456")

        assert result.session.requires == SessionRequirement.NOTHING
        assert upstream.form(upstream.calls[0])["otp"] == "123456"
        assert await session_cache.get(test_user.id, test_directory.id) == SESSION_KEY

    async def test_select_client_caches_new_key(
        self, directory_service, session_cache, upstream, test_user, test_directory
    ):
        upstream.on_json("GET", "/client/", {"status": "success", "clients": {"0": "ACME SAC"}})
        upstream.on_json("GET", "/client/0/", {"status": "success", "key": "n" * 32})

        key = await directory_service.select_client(test_user.id, test_directory.id, SESSION_KEY, "0")

        assert key == "n" * 32
        assert await session_cache.get(test_user.id, test_directory.id) == "n" * 32

    async def test_select_unknown_client_is_not_found(self, directory_service, upstream, test_user, test_directory):
        upstream.on_json("GET", "/client/", {"status": "success", "clients": {"0": "ACME SAC"}})

        with pytest.raises(NotFoundError):
            await directory_service.select_client(test_user.id, test_directory.id, SESSION_KEY, "9")

        assert upstream.calls_to("GET", "/client/9/") == []

    async def test_logout_drops_cached_key(self, directory_service, session_cache, upstream, test_user, test_directory):
        await session_cache.put(test_user.id, test_directory.id, SESSION_KEY)
        upstream.on_json("GET", "/logout/", {"status": "logged_out"})

        assert await directory_service.logout(test_user.id, test_directory.id) is True
        assert upstream.calls[0].url.params["key"] == SESSION_KEY
        assert await session_cache.get(test_user.id, test_directory.id) is None

    async def test_logout_without_session(self, directory_service, upstream, test_user, test_directory):
        assert await directory_service.logout(test_user.id, test_directory.id) is False
        assert upstream.calls == []


class TestOperations:
    @pytest.mark.parametrize(
        ("currency", "start_date", "end_date"),
        [
            ("pen", "01/01/2024", "31/01/2024"),
            ("SOLES", "01/01/2024", "31/01/2024"),
            ("PEN", "2024-01-01", "31/01/2024"),
            ("PEN", "01/01/2024", "31/13/2024"),
            ("PEN", "31/01/2024", "01/01/2024"),
        ],
    )
    async def test_movement_filters_are_validated_first(
        self, directory_service, upstream, test_user, test_directory, currency, start_date, end_date
    ):
        with pytest.raises(ValidationError):
            await directory_service.list_movements(
                test_user.id,
                test_directory.id,
                "191-1",
                currency=currency,
                start_date=start_date,
                end_date=end_date,
            )

        assert upstream.calls == []

    async def test_transfer_flow(self, directory_service, upstream, test_user, test_directory):
        upstream.on_json("POST", "/login/", logged_in())
        upstream.on_json(
            "POST",
            "/transfer/preprocess",
            {
                "status": "success",
                "result": {
                    "approved": True,
                    "authorization_devices": [{"type": "cardCode", "data": ["A1"]}],
                    "message": None,
                    "request_id": "req-1",
                },
            },
        )
        upstream.on_json(
            "POST",
            "/transfer/confirm",
            {"status": "success", "transfer": {"success": True, "message": "Transferencia realizada"}},
        )

        request = await directory_service.request_transfer(
            test_user.id,
            test_directory.id,
            TransferPreprocessRequest(
                origin_account="191-1",
                destination_account="002-2",
                destination_institution=0,
                concept="rent",
                currency="PEN",
                amount=Decimal("150.00"),
            ),
        )
        confirmation = await directory_service.confirm_transfer(
            test_user.id,
            test_directory.id,
            TransferConfirmRequest(
                request_id=request.request_id,
                authorization_type="cardCode",
                authorization_data="1234",
            ),
        )

        assert confirmation.success is True
        preprocess_form = upstream.form(upstream.calls_to("POST", "/transfer/preprocess")[0])
        assert preprocess_form["amount"] == "150.00"
        assert preprocess_form["branch"] == ""
        confirm_form = upstream.form(upstream.calls_to("POST", "/transfer/confirm")[0])
        assert confirm_form == {
            "request_id": "req-1",
            "authorization_type": "cardCode",
            "authorization_data": "1234",
        }
        assert len(upstream.calls_to("POST", "/login/")) == 1
