# Tests for the OAuth2 authorization server.
# Created: 2026-10-18

import secrets
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from quoteauth.oauth2.codes import build_redirect_url, parse_scopes, s256_challenge
from quoteauth.oauth2.errors import ErrorKind
from quoteauth.oauth2.server import AuthorizationServer
from quoteauth.oauth2.storage import MemoryOAuthStorage
from quoteauth.security.claims_tokens import AccessClaims, ClaimsTokenSigner

SIGNING_KEY = "unit-test-signing-key-0123456789abcdef0123"
REDIRECT = "https://client.example/cb"


class FakeClock:
    def __init__(self):
        self.now = datetime.now(UTC)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _make_pkce_pair():
    verifier = secrets.token_urlsafe(32)
    return verifier, s256_challenge(verifier)


def _code_from(redirect_url: str) -> str:
    return parse_qs(urlsplit(redirect_url).query)["code"][0]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signer():
    return ClaimsTokenSigner(key=SIGNING_KEY, algorithm="HS256")


@pytest.fixture
def storage():
    return MemoryOAuthStorage()


@pytest.fixture
def server(storage, signer, clock):
    return AuthorizationServer(storage, signer=signer, clock=clock)


@pytest.fixture
def registered(server):
    app, secret = server.create_app("owner-1", "Acme CRM", REDIRECT)
    return app, secret


def _authorize(server, app, user_id="user-1", **kwargs):
    params = {"scope": "proposals:read clients:read"}
    params.update(kwargs)
    url, error = server.authorize(
        client_id=app.client_id,
        redirect_uri=REDIRECT,
        response_type="code",
        user_id=user_id,
        **params,
    )
    assert error is None
    return _code_from(url)


def _exchange(server, app, secret, code, **kwargs):
    return server.token(
        grant_type="authorization_code",
        client_id=app.client_id,
        client_secret=secret,
        code=code,
        **kwargs,
    )


# ===================== App registry =====================


class TestAppRegistry:
    def test_create_returns_secret_once_and_stores_hash(self, server, storage, registered):
        app, secret = registered
        assert app.client_id.startswith("sq_")
        assert secret.startswith("sqs_")
        assert secret not in app.client_secret_hash
        assert storage.get_app(app.id).client_secret_hash == app.client_secret_hash

    def test_client_ids_are_unique(self, server):
        ids = {server.create_app("owner-1", f"app {i}", REDIRECT)[0].client_id for i in range(20)}
        assert len(ids) == 20

    def test_list_is_owner_scoped_newest_first(self, server, clock):
        first, _ = server.create_app("owner-1", "first", REDIRECT)
        clock.advance(seconds=1)
        second, _ = server.create_app("owner-1", "second", REDIRECT)
        server.create_app("owner-2", "other", REDIRECT)
        assert [a.id for a in server.list_apps("owner-1")] == [second.id, first.id]

    def test_get_foreign_app_is_not_found(self, server, registered):
        app, _ = registered
        found, error = server.get_app("owner-2", app.id)
        assert found is None
        assert error.kind == ErrorKind.NOT_FOUND
        assert error.http_status == 404

    def test_regenerate_secret_invalidates_old(self, server, registered):
        app, old_secret = registered
        new_secret, error = server.regenerate_secret("owner-1", app.id)
        assert error is None
        assert new_secret != old_secret
        assert server.get_app("owner-1", app.id)[0].client_id == app.client_id

        code = _authorize(server, app)
        _, error = _exchange(server, app, old_secret, code)
        assert error.kind == ErrorKind.INVALID_CLIENT
        result, error = _exchange(server, app, new_secret, code)
        assert error is None

    def test_regenerate_secret_not_owner(self, server, registered):
        app, _ = registered
        secret, error = server.regenerate_secret("owner-2", app.id)
        assert secret is None
        assert error.kind == ErrorKind.NOT_FOUND

    def test_delete_cascades(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        pending = _authorize(server, app)

        assert server.delete_app("owner-1", app.id) is None
        assert server.get_app("owner-1", app.id)[1].kind == ErrorKind.NOT_FOUND
        assert server.validate(tokens["access_token"])[1].kind == ErrorKind.UNAUTHORIZED
        _, error = _exchange(server, app, secret, pending)
        assert error.kind == ErrorKind.INVALID_CLIENT

    def test_delete_not_owner(self, server, registered):
        app, _ = registered
        assert server.delete_app("owner-2", app.id).kind == ErrorKind.NOT_FOUND
        assert server.get_app("owner-1", app.id)[0] is not None


# ===================== Authorize =====================


class TestAuthorize:
    def test_redirect_carries_code_and_state(self, server, registered):
        app, _ = registered
        url, error = server.authorize(
            client_id=app.client_id,
            redirect_uri=REDIRECT,
            response_type="code",
            user_id="user-1",
            state="xyz",
        )
        assert error is None
        assert url.startswith(REDIRECT + "?")
        query = parse_qs(urlsplit(url).query)
        assert len(query["code"][0]) == 64
        assert query["state"] == ["xyz"]

    def test_code_stored_hashed(self, server, storage, registered):
        app, _ = registered
        code = _authorize(server, app)
        assert all(c.code_hash != code for c in storage._codes.values())

    def test_unknown_client(self, server):
        url, error = server.authorize(
            client_id="sq_unknown",
            redirect_uri=REDIRECT,
            response_type="code",
            user_id="user-1",
        )
        assert url is None
        assert error.kind == ErrorKind.INVALID_CLIENT

    def test_inactive_app(self, server, storage, registered):
        app, _ = registered
        storage.get_app(app.id).is_active = False
        _, error = server.authorize(
            client_id=app.client_id, redirect_uri=REDIRECT, response_type="code", user_id="u"
        )
        assert error.kind == ErrorKind.INVALID_CLIENT

    @pytest.mark.parametrize(
        "uri",
        [
            "https://client.example/cb/",
            "https://client.example/cb?x=1",
            "https://client.example/c",
            "HTTPS://client.example/cb",
            "https://evil.example/cb",
        ],
    )
    def test_redirect_must_match_exactly(self, server, registered, uri):
        app, _ = registered
        _, error = server.authorize(
            client_id=app.client_id, redirect_uri=uri, response_type="code", user_id="u"
        )
        assert error.kind == ErrorKind.INVALID_REQUEST

    def test_only_code_response_type(self, server, registered):
        app, _ = registered
        _, error = server.authorize(
            client_id=app.client_id, redirect_uri=REDIRECT, response_type="token", user_id="u"
        )
        assert error.kind == ErrorKind.UNSUPPORTED_RESPONSE_TYPE

    def test_unknown_challenge_method(self, server, registered):
        app, _ = registered
        _, error = server.authorize(
            client_id=app.client_id,
            redirect_uri=REDIRECT,
            response_type="code",
            user_id="u",
            code_challenge="abc",
            code_challenge_method="S512",
        )
        assert error.kind == ErrorKind.INVALID_REQUEST

    def test_requested_scopes_granted_verbatim(self, server, registered):
        app, secret = registered
        code = _authorize(server, app, scope="proposals:read anything:else")
        tokens, _ = _exchange(server, app, secret, code)
        assert tokens["scope"] == "proposals:read anything:else"


# ===================== Code exchange =====================


class TestCodeExchange:
    def test_exchange_returns_token_pair(self, server, registered):
        app, secret = registered
        tokens, error = _exchange(server, app, secret, _authorize(server, app))
        assert error is None
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600
        assert tokens["scope"] == "proposals:read clients:read"
        assert len(tokens["refresh_token"]) == 64

    def test_code_is_single_use(self, server, registered):
        app, secret = registered
        code = _authorize(server, app)
        _exchange(server, app, secret, code)
        tokens, error = _exchange(server, app, secret, code)
        assert tokens is None
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_expired_code(self, server, registered, clock):
        app, secret = registered
        code = _authorize(server, app)
        clock.advance(minutes=10, seconds=1)
        _, error = _exchange(server, app, secret, code)
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_code_just_before_expiry(self, server, registered, clock):
        app, secret = registered
        code = _authorize(server, app)
        clock.advance(minutes=9, seconds=59)
        _, error = _exchange(server, app, secret, code)
        assert error is None

    def test_code_bound_to_app(self, server, registered):
        app, _ = registered
        other, other_secret = server.create_app("owner-9", "Other", REDIRECT)
        code = _authorize(server, app)
        _, error = _exchange(server, other, other_secret, code)
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_wrong_secret(self, server, registered):
        app, _ = registered
        _, error = _exchange(server, app, "sqs_wrong", _authorize(server, app))
        assert error.kind == ErrorKind.INVALID_CLIENT
        assert error.http_status == 401

    def test_redirect_mismatch_at_exchange(self, server, registered):
        app, secret = registered
        code = _authorize(server, app)
        _, error = _exchange(server, app, secret, code, redirect_uri=REDIRECT + "/")
        assert error.kind == ErrorKind.INVALID_GRANT
        # A failed check does not consume the code.
        _, error = _exchange(server, app, secret, code, redirect_uri=REDIRECT)
        assert error is None

    def test_failures_share_one_message(self, server, registered, clock):
        app, secret = registered
        used = _authorize(server, app)
        _exchange(server, app, secret, used)
        _, challenge = _make_pkce_pair()
        pkce = _authorize(server, app, code_challenge=challenge, code_challenge_method="S256")
        expired = _authorize(server, app)

        messages = {
            _exchange(server, app, secret, used)[1].description,
            _exchange(server, app, secret, "nonexistent")[1].description,
            _exchange(server, app, secret, pkce, code_verifier="nope")[1].description,
            _exchange(server, app, secret, pkce, redirect_uri="https://x.example")[1].description,
        }
        clock.advance(minutes=11)
        messages.add(_exchange(server, app, secret, expired)[1].description)
        assert messages == {"Invalid or expired authorization code"}

    def test_missing_code(self, server, registered):
        app, secret = registered
        _, error = _exchange(server, app, secret, None)
        assert error.kind == ErrorKind.INVALID_REQUEST

    def test_unsupported_grant_type(self, server, registered):
        app, secret = registered
        _, error = server.token(
            grant_type="password", client_id=app.client_id, client_secret=secret
        )
        assert error.kind == ErrorKind.UNSUPPORTED_GRANT_TYPE

    def test_concurrent_exchange_only_one_wins(self, server, registered):
        app, secret = registered
        code = _authorize(server, app)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: _exchange(server, app, secret, code), range(8)))
        winners = [r for r, e in results if e is None]
        losers = [e for r, e in results if e is not None]
        assert len(winners) == 1
        assert all(e.kind == ErrorKind.INVALID_GRANT for e in losers)


# ===================== PKCE =====================


class TestPKCE:
    def test_s256_valid_verifier(self, server, registered):
        app, secret = registered
        verifier, challenge = _make_pkce_pair()
        code = _authorize(server, app, code_challenge=challenge, code_challenge_method="S256")
        _, error = _exchange(server, app, secret, code, code_verifier=verifier)
        assert error is None

    @pytest.mark.parametrize("bad", ["", "wrong-verifier", "verifier-ab", "verifier-abc "])
    def test_s256_other_verifier_fails(self, server, registered, bad):
        app, secret = registered
        challenge = s256_challenge("verifier-abc")
        code = _authorize(server, app, code_challenge=challenge, code_challenge_method="S256")
        _, error = _exchange(server, app, secret, code, code_verifier=bad)
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_missing_verifier(self, server, registered):
        app, secret = registered
        _, challenge = _make_pkce_pair()
        code = _authorize(server, app, code_challenge=challenge, code_challenge_method="S256")
        _, error = _exchange(server, app, secret, code)
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_plain_method(self, server, registered):
        app, secret = registered
        code = _authorize(server, app, code_challenge="plain-secret", code_challenge_method="plain")
        assert _exchange(server, app, secret, code, code_verifier="other")[1] is not None
        code = _authorize(server, app, code_challenge="plain-secret", code_challenge_method="plain")
        assert _exchange(server, app, secret, code, code_verifier="plain-secret")[1] is None

    def test_challenge_without_method_defaults_to_plain(self, server, registered):
        app, secret = registered
        code = _authorize(server, app, code_challenge="plain-secret")
        assert _exchange(server, app, secret, code, code_verifier="plain-secret")[1] is None

    def test_known_s256_vector(self):
        # RFC 7636 appendix B
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


# ===================== Refresh =====================


class TestRefresh:
    def _tokens(self, server, app, secret):
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        return tokens

    def _refresh(self, server, app, secret, refresh_token):
        return server.token(
            grant_type="refresh_token",
            client_id=app.client_id,
            client_secret=secret,
            refresh_token=refresh_token,
        )

    def test_refresh_rotates_pair(self, server, registered):
        app, secret = registered
        tokens = self._tokens(server, app, secret)
        new, error = self._refresh(server, app, secret, tokens["refresh_token"])
        assert error is None
        assert new["access_token"] != tokens["access_token"]
        assert new["refresh_token"] != tokens["refresh_token"]
        assert new["scope"] == tokens["scope"]

    def test_replayed_refresh_token_fails(self, server, registered):
        app, secret = registered
        tokens = self._tokens(server, app, secret)
        self._refresh(server, app, secret, tokens["refresh_token"])
        result, error = self._refresh(server, app, secret, tokens["refresh_token"])
        assert result is None
        assert error.kind == ErrorKind.INVALID_GRANT
        assert error.http_status == 401

    def test_refresh_revokes_old_access_token(self, server, registered):
        app, secret = registered
        tokens = self._tokens(server, app, secret)
        new, _ = self._refresh(server, app, secret, tokens["refresh_token"])
        assert server.validate(tokens["access_token"])[1] is not None
        assert server.validate(new["access_token"])[1] is None

    def test_expired_refresh_token(self, server, registered, clock):
        app, secret = registered
        tokens = self._tokens(server, app, secret)
        clock.advance(days=30, seconds=1)
        _, error = self._refresh(server, app, secret, tokens["refresh_token"])
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_refresh_bound_to_app(self, server, registered):
        app, secret = registered
        other, other_secret = server.create_app("owner-9", "Other", REDIRECT)
        tokens = self._tokens(server, app, secret)
        _, error = self._refresh(server, other, other_secret, tokens["refresh_token"])
        assert error.kind == ErrorKind.INVALID_GRANT
        # Still usable by its own app.
        assert self._refresh(server, app, secret, tokens["refresh_token"])[1] is None

    def test_old_token_stays_revoked_if_issuance_fails(self, server, storage, registered, monkeypatch):
        app, secret = registered
        tokens = self._tokens(server, app, secret)

        def boom(token):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(storage, "add_token", boom)
        with pytest.raises(RuntimeError):
            self._refresh(server, app, secret, tokens["refresh_token"])
        monkeypatch.undo()

        _, error = self._refresh(server, app, secret, tokens["refresh_token"])
        assert error.kind == ErrorKind.INVALID_GRANT

    def test_concurrent_refresh_only_one_wins(self, server, registered):
        app, secret = registered
        tokens = self._tokens(server, app, secret)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(
                    lambda _: self._refresh(server, app, secret, tokens["refresh_token"]),
                    range(8),
                )
            )
        assert sum(1 for _, e in results if e is None) == 1


# ===================== Validation & revocation =====================


class TestValidateAndRevoke:
    def test_validate_returns_identity(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app, user_id="alice"))
        identity, error = server.validate(tokens["access_token"])
        assert error is None
        assert identity.user_id == "alice"
        assert identity.client_id == app.client_id
        assert identity.scopes == ("proposals:read", "clients:read")

    def test_revoked_token_fails_validation(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        assert server.revoke(tokens["access_token"]) is True
        identity, error = server.validate(tokens["access_token"])
        assert identity is None
        assert error.kind == ErrorKind.UNAUTHORIZED

    def test_record_expiry_checked(self, server, registered, clock):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        clock.advance(hours=1, seconds=1)
        assert server.validate(tokens["access_token"])[1].kind == ErrorKind.UNAUTHORIZED

    def test_signed_token_without_record_fails(self, server, signer):
        forged = signer.issue(
            AccessClaims(subject="user-1", client_id="sq_x", scopes=("proposals:read",)),
            timedelta(hours=1),
        )
        assert server.validate(forged)[1].kind == ErrorKind.UNAUTHORIZED

    def test_wrong_type_token_fails(self, server, signer):
        reset = signer.issue(
            AccessClaims(subject="user-1", client_id="sq_x", scopes=(), type="password_reset"),
            timedelta(hours=1),
        )
        assert server.validate(reset)[1].kind == ErrorKind.UNAUTHORIZED

    def test_garbage_token_fails(self, server):
        assert server.validate("not-a-token")[1].kind == ErrorKind.UNAUTHORIZED

    def test_record_for_other_client_fails(self, server, storage, registered):
        app, secret = registered
        other, _ = server.create_app("owner-2", "Other CRM", REDIRECT)
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        [record] = storage.list_user_tokens("user-1")
        record.app_id = other.id
        identity, error = server.validate(tokens["access_token"])
        assert identity is None
        assert error.kind == ErrorKind.UNAUTHORIZED

    def test_revoke_by_refresh_hint(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        # Without the hint a refresh token is matched against access hashes: no-op.
        server.revoke(tokens["refresh_token"])
        assert server.validate(tokens["access_token"])[1] is None
        server.revoke(tokens["refresh_token"], "refresh_token")
        assert server.validate(tokens["access_token"])[1] is not None

    def test_revoke_is_idempotent(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app))
        assert server.revoke(tokens["access_token"]) is True
        assert server.revoke(tokens["access_token"]) is True
        assert server.revoke("never-issued") is True
        assert server.revoke("never-issued", "refresh_token") is True


# ===================== Consent management =====================


class TestAuthorizedApps:
    def test_lists_apps_with_live_grants(self, server, registered, clock):
        app, secret = registered
        other, other_secret = server.create_app("owner-2", "Other", REDIRECT)
        _exchange(server, app, secret, _authorize(server, app, user_id="alice"))
        clock.advance(seconds=5)
        _exchange(server, other, other_secret, _authorize(server, other, user_id="alice"))
        _exchange(server, app, secret, _authorize(server, app, user_id="bob"))

        entries = server.list_authorized_apps("alice")
        assert [e["app"].id for e in entries] == [other.id, app.id]
        assert entries[1]["scopes"] == ["proposals:read", "clients:read"]

    def test_one_entry_per_app(self, server, registered):
        app, secret = registered
        for _ in range(3):
            _exchange(server, app, secret, _authorize(server, app, user_id="alice"))
        assert len(server.list_authorized_apps("alice")) == 1

    def test_revoke_app_authorization(self, server, registered):
        app, secret = registered
        tokens, _ = _exchange(server, app, secret, _authorize(server, app, user_id="alice"))
        pending = _authorize(server, app, user_id="alice")
        bob_tokens, _ = _exchange(server, app, secret, _authorize(server, app, user_id="bob"))

        server.revoke_app_authorization("alice", app.id)

        assert server.list_authorized_apps("alice") == []
        assert server.validate(tokens["access_token"])[1] is not None
        assert _exchange(server, app, secret, pending)[1].kind == ErrorKind.INVALID_GRANT
        assert server.validate(bob_tokens["access_token"])[1] is None

    def test_purge_expired(self, server, storage, registered, clock):
        app, secret = registered
        _exchange(server, app, secret, _authorize(server, app))
        _authorize(server, app)
        clock.advance(days=31)
        assert server.purge_expired() == (2, 1)
        assert storage._codes == {}
        assert storage._tokens == {}


# ===================== Helpers =====================


class TestHelpers:
    def test_parse_scopes(self):
        assert parse_scopes(None) == []
        assert parse_scopes("") == []
        assert parse_scopes("a  b a") == ["a", "b"]

    def test_build_redirect_url_keeps_existing_query(self):
        url = build_redirect_url("https://c.example/cb?x=1&code=old", {"code": "new", "state": "s"})
        assert parse_qs(urlsplit(url).query) == {"x": ["1"], "code": ["new"], "state": ["s"]}
