"""Unit tests for the credential HTTP routes (admin and user halves)."""

from __future__ import annotations

import httpx
import pytest

from fleet_dashboard.credentials.codec import canonical_timestamp, challenge_digest, parse_timestamp
from fleet_dashboard.credentials.models import Principal, PrincipalKind
from fleet_dashboard.servers.context import MainAppContext
from fleet_dashboard.servers.main import build_context, create_app, sweep_once
from fleet_dashboard.utils.environment import Settings

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
NEW_YEAR = 1_704_067_200.0
STAMP = "2024-01-01T00:00:00.000Z"
ADMIN_EMAIL = "boss@fleet.io"
ADMIN_SECRET = "adm1n-secret"
USER_EMAIL = "driver@fleet.io"
USER_SECRET = "dr1ver-secret"


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _auth_body(email: str, secret: str, stamp: str = STAMP) -> dict[str, str]:
    moment = parse_timestamp(stamp)
    return {
        "email": email,
        "date": canonical_timestamp(moment),
        "auth_token": challenge_digest(secret, email, moment),
    }


def _headers(email: str, token: str) -> dict[str, str]:
    return {"X-Principal-Email": email, "Authorization": f"Bearer {token}"}


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NEW_YEAR)


@pytest.fixture()
async def context(clock: FakeClock) -> MainAppContext:
    ctx = build_context(Settings(store_backend="memory"), clock=clock)
    await ctx.manager(PrincipalKind.ADMIN).principals.add_principal(
        Principal(ADMIN_EMAIL, ADMIN_SECRET, kind=PrincipalKind.ADMIN)
    )
    await ctx.user_directory.add_principal(
        Principal(USER_EMAIL, USER_SECRET, display_email="Driver@Fleet.io")
    )
    return ctx


@pytest.fixture()
async def client(context: MainAppContext):
    """Async HTTP client bound to the Starlette app."""
    transport = httpx.ASGITransport(app=create_app(context=context))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _admin_token(client: httpx.AsyncClient) -> str:
    resp = await client.post("/api/admin/auth", json=_auth_body(ADMIN_EMAIL, ADMIN_SECRET))
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


# --------------------------------------------------------------------------- #
# Health & plumbing                                                           #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_health(client: httpx.AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_correlation_id_is_echoed(client: httpx.AsyncClient) -> None:
    resp = await client.get("/health", headers={"X-Correlation-ID": "abc123"})
    assert resp.headers["X-Correlation-ID"] == "abc123"

    generated = await client.get("/health")
    assert len(generated.headers["X-Correlation-ID"]) == 32


# --------------------------------------------------------------------------- #
# /api/{kind}/auth                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
@pytest.mark.parametrize(
    ("kind", "email", "secret"),
    [("admin", ADMIN_EMAIL, ADMIN_SECRET), ("user", USER_EMAIL, USER_SECRET)],
)
async def test_auth_issues_token_per_kind(client, kind: str, email: str, secret: str) -> None:
    resp = await client.post(f"/api/{kind}/auth", json=_auth_body(email, secret))
    assert resp.status_code == 200
    data = resp.json()
    assert data["ttl"] == 3_600_000
    assert data["access_token"]


@pytest.mark.anyio
async def test_kinds_do_not_share_principals(client: httpx.AsyncClient) -> None:
    resp = await client.post("/api/user/auth", json=_auth_body(ADMIN_EMAIL, ADMIN_SECRET))
    assert resp.status_code == 401
    assert resp.json()["error"] == "unknown_principal"


@pytest.mark.anyio
async def test_auth_bad_digest(client: httpx.AsyncClient) -> None:
    body = _auth_body(ADMIN_EMAIL, "wrong-secret")
    resp = await client.post("/api/admin/auth", json=body)
    assert resp.status_code == 401
    payload = resp.json()
    assert payload["error"] == "invalid_challenge"
    assert payload["messages"] == [payload["message"]]
    assert body["auth_token"] not in resp.text


@pytest.mark.anyio
async def test_auth_validation_errors(client: httpx.AsyncClient) -> None:
    resp = await client.post("/api/admin/auth", json={"email": ADMIN_EMAIL, "date": "soon", "auth_token": "x"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "date"

    resp = await client.post("/api/admin/auth", content=b"[1, 2]")
    assert resp.status_code == 400
    assert resp.json()["field"] == "body"

    resp = await client.post("/api/admin/auth", content=b"{nope")
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_unknown_kind_is_404(client: httpx.AsyncClient) -> None:
    resp = await client.post("/api/driver/auth", json=_auth_body(USER_EMAIL, USER_SECRET))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


# --------------------------------------------------------------------------- #
# verify / revoke                                                             #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_verify_with_headers_and_body(client: httpx.AsyncClient) -> None:
    token = await _admin_token(client)

    resp = await client.post("/api/admin/verify", headers=_headers("Boss@Fleet.io", token))
    assert resp.status_code == 200
    assert resp.json() == {"email": ADMIN_EMAIL, "kind": "admin"}

    resp = await client.post(
        "/api/admin/verify",
        json={"credentials": {"email": ADMIN_EMAIL, "access_token": token}},
    )
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_admin_token_is_not_a_user_token(client: httpx.AsyncClient) -> None:
    token = await _admin_token(client)
    resp = await client.post("/api/user/verify", headers=_headers(ADMIN_EMAIL, token))
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_verify_after_expiry(client: httpx.AsyncClient, clock: FakeClock) -> None:
    token = await _admin_token(client)
    clock.now = NEW_YEAR + 90 * 60
    resp = await client.post("/api/admin/verify", headers=_headers(ADMIN_EMAIL, token))
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_or_expired_token"


@pytest.mark.anyio
async def test_verify_missing_credentials(client: httpx.AsyncClient) -> None:
    resp = await client.post("/api/admin/verify")
    assert resp.status_code == 400
    assert resp.json()["field"] == "email"


@pytest.mark.anyio
async def test_revoke(client: httpx.AsyncClient) -> None:
    token = await _admin_token(client)
    resp = await client.post("/api/admin/revoke", headers=_headers(ADMIN_EMAIL, token))
    assert resp.status_code == 204

    resp = await client.post("/api/admin/verify", headers=_headers(ADMIN_EMAIL, token))
    assert resp.status_code == 401


# --------------------------------------------------------------------------- #
# Admin user directory                                                        #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_list_users_requires_admin(client: httpx.AsyncClient) -> None:
    resp = await client.get("/api/admin/users")
    assert resp.status_code == 400

    resp = await client.get("/api/admin/users", headers=_headers(ADMIN_EMAIL, "forged"))
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_list_and_get_users(client: httpx.AsyncClient) -> None:
    token = await _admin_token(client)
    headers = _headers(ADMIN_EMAIL, token)

    resp = await client.get("/api/admin/users", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == [
        {"email": USER_EMAIL, "display_email": "Driver@Fleet.io", "kind": "user"}
    ]
    assert USER_SECRET not in resp.text

    resp = await client.get(f"/api/admin/user/{USER_EMAIL}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["email"] == USER_EMAIL

    resp = await client.get("/api/admin/user/ghost@fleet.io", headers=headers)
    assert resp.status_code == 404


# --------------------------------------------------------------------------- #
# /api/admin/new-user                                                         #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_new_user_issues_registration_token(
    client: httpx.AsyncClient, context: MainAppContext
) -> None:
    token = await _admin_token(client)
    resp = await client.post(
        "/api/admin/new-user",
        json={
            "credentials": {"email": ADMIN_EMAIL, "access_token": token},
            "user_email": "Rookie@Fleet.io",
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["ttl"] == 21_600_000
    assert len(data["registration_token"]) == 16

    stored = await context.registration.registrations.get_registration_token("rookie@fleet.io")
    assert stored is not None and stored.token_value == data["registration_token"]


@pytest.mark.anyio
async def test_new_user_rejections(client: httpx.AsyncClient) -> None:
    token = await _admin_token(client)
    creds = {"email": ADMIN_EMAIL, "access_token": token}

    resp = await client.post("/api/admin/new-user", json={"credentials": creds, "user_email": "nope"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_target_identifier"

    resp = await client.post(
        "/api/admin/new-user", json={"credentials": creds, "user_email": USER_EMAIL}
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "already_exists"

    resp = await client.post(
        "/api/admin/new-user",
        json={"credentials": {"email": ADMIN_EMAIL, "access_token": "x"}, "user_email": "a@fleet.io"},
    )
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_user_token_cannot_issue_registrations(client: httpx.AsyncClient) -> None:
    resp = await client.post("/api/user/auth", json=_auth_body(USER_EMAIL, USER_SECRET))
    user_token = resp.json()["access_token"]
    resp = await client.post(
        "/api/admin/new-user",
        json={"credentials": {"email": USER_EMAIL, "access_token": user_token}, "user_email": "a@fleet.io"},
    )
    assert resp.status_code == 401


# --------------------------------------------------------------------------- #
# Sweep                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_sweep_once_clears_all_namespaces(
    client: httpx.AsyncClient, context: MainAppContext, clock: FakeClock
) -> None:
    token = await _admin_token(client)
    await client.post("/api/user/auth", json=_auth_body(USER_EMAIL, USER_SECRET))
    await client.post(
        "/api/admin/new-user",
        json={"credentials": {"email": ADMIN_EMAIL, "access_token": token}, "user_email": "r@fleet.io"},
    )

    clock.now = NEW_YEAR + 7 * 3600
    assert await sweep_once(context) == 3
    assert await sweep_once(context) == 0
