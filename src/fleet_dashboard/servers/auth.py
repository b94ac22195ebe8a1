"""Credential endpoints for the admin and user halves of the dashboard API.

Handlers are intentionally thin:

1. Parse the JSON body (or credential headers).
2. Delegate business logic to the credential engines in
   :class:`~fleet_dashboard.servers.context.MainAppContext`.
3. Map the returned ``Result`` to a Starlette ``Response``.

Credentials for protected routes come from ``{"credentials": {"email",
"access_token"}}`` in the body, or from the ``X-Principal-Email`` and
``Authorization: Bearer`` headers.

SECURITY NOTE
-------------
• No raw secrets (challenge digests, access or registration tokens) are ever
  logged.
• Correlation IDs from ``request.state.correlation_id`` are forwarded to the
  engines so their log records can be tied back to the request.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from fleet_dashboard.credentials.errors import CredentialError, ValidationError
from fleet_dashboard.credentials.models import PrincipalKind, Result, normalize_identifier
from fleet_dashboard.credentials.service import guarded
from fleet_dashboard.servers.context import MainAppContext

_LOG = logging.getLogger("fleet-dashboard.auth.routes")

_EMAIL_HEADER = "x-principal-email"


def _context(request: Request) -> MainAppContext:
    return request.app.state.credentials


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def _error_response(error: CredentialError) -> JSONResponse:
    return JSONResponse(error.to_payload(), status_code=error.status_code)


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(
        {"error": "not_found", "message": message, "messages": [message]}, status_code=404
    )


def _kind(request: Request) -> PrincipalKind | None:
    try:
        return PrincipalKind(request.path_params["kind"])
    except ValueError:
        return None


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise ValidationError("body", "must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a JSON object")
    return data


def _credentials(request: Request, body: dict[str, Any]) -> tuple[Any, Any]:
    creds = body.get("credentials")
    if isinstance(creds, dict) and (creds.get("email") or creds.get("access_token")):
        return creds.get("email"), creds.get("access_token")

    token: str | None = None
    authorization = request.headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    return request.headers.get(_EMAIL_HEADER), token


async def _require_access(
    request: Request, kind: PrincipalKind, body: dict[str, Any]
) -> Result[str]:
    email, token = _credentials(request, body)
    return await _context(request).manager(kind).verify(
        email, token, correlation_id=_correlation_id(request)
    )


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def build_auth_routes(*, base_path: str = "/api") -> list[Route]:
    """Return the credential routes mounted under *base_path*."""

    # ----- POST /api/{kind}/auth ------------------------------------------ #
    async def _authenticate(request: Request) -> Response:
        kind = _kind(request)
        if kind is None:
            return _not_found(f"Unknown principal kind '{request.path_params['kind']}'")
        try:
            body = await _json_body(request)
        except ValidationError as exc:
            return _error_response(exc)

        result = await _context(request).manager(kind).authenticate(
            body.get("email"),
            body.get("date"),
            body.get("auth_token"),
            correlation_id=_correlation_id(request),
        )
        if not result.ok:
            return _error_response(result.error)  # type: ignore[arg-type]

        issued = result.value
        assert issued is not None
        return JSONResponse({"access_token": issued.token_value, "ttl": issued.ttl_millis})

    # ----- POST /api/{kind}/verify ---------------------------------------- #
    async def _verify(request: Request) -> Response:
        kind = _kind(request)
        if kind is None:
            return _not_found(f"Unknown principal kind '{request.path_params['kind']}'")
        try:
            body = await _json_body(request)
        except ValidationError as exc:
            return _error_response(exc)

        access = await _require_access(request, kind, body)
        if not access.ok:
            return _error_response(access.error)  # type: ignore[arg-type]
        return JSONResponse({"email": access.value, "kind": kind.value})

    # ----- POST /api/{kind}/revoke ---------------------------------------- #
    async def _revoke(request: Request) -> Response:
        kind = _kind(request)
        if kind is None:
            return _not_found(f"Unknown principal kind '{request.path_params['kind']}'")
        try:
            body = await _json_body(request)
        except ValidationError as exc:
            return _error_response(exc)

        email, token = _credentials(request, body)
        result = await _context(request).manager(kind).revoke(
            email, token, correlation_id=_correlation_id(request)
        )
        if not result.ok:
            return _error_response(result.error)  # type: ignore[arg-type]
        return Response(status_code=204)

    # ----- GET /api/admin/users ------------------------------------------- #
    async def _list_users(request: Request) -> Response:
        try:
            body = await _json_body(request)
            (await _require_access(request, PrincipalKind.ADMIN, body)).unwrap()
            users = await guarded(
                _context(request).user_directory.list_principals(), kind=PrincipalKind.USER
            )
        except CredentialError as exc:
            return _error_response(exc)
        return JSONResponse([user.public_view() for user in users])

    # ----- GET /api/admin/user/{email} ------------------------------------ #
    async def _get_user(request: Request) -> Response:
        email = normalize_identifier(request.path_params["email"])
        try:
            body = await _json_body(request)
            (await _require_access(request, PrincipalKind.ADMIN, body)).unwrap()
            user = await guarded(
                _context(request).user_directory.get_principal(email), kind=PrincipalKind.USER
            )
        except CredentialError as exc:
            return _error_response(exc)
        if user is None:
            return _not_found(f"There is no user with the email '{email}'")
        return JSONResponse(user.public_view())

    # ----- POST /api/admin/new-user --------------------------------------- #
    async def _new_user(request: Request) -> Response:
        try:
            body = await _json_body(request)
        except ValidationError as exc:
            return _error_response(exc)

        email, token = _credentials(request, body)
        result = await _context(request).registration.issue_registration(
            email,
            token,
            body.get("user_email"),
            correlation_id=_correlation_id(request),
        )
        if not result.ok:
            return _error_response(result.error)  # type: ignore[arg-type]

        issued = result.value
        assert issued is not None
        _LOG.info(
            "Registration token issued correlation_id=%s",
            _correlation_id(request) or "-",
        )
        return JSONResponse({"registration_token": issued.token_value, "ttl": issued.ttl_millis})

    return [
        Route(f"{base_path}/admin/users", _list_users, methods=["GET"]),
        Route(f"{base_path}/admin/user/{{email}}", _get_user, methods=["GET"]),
        Route(f"{base_path}/admin/new-user", _new_user, methods=["POST"]),
        Route(f"{base_path}/{{kind}}/auth", _authenticate, methods=["POST"]),
        Route(f"{base_path}/{{kind}}/verify", _verify, methods=["POST"]),
        Route(f"{base_path}/{{kind}}/revoke", _revoke, methods=["POST"]),
    ]
