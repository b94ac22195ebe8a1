"""Principal and token persistence for the credential core.

This module introduces two *narrow* persistence interfaces
(:class:`PrincipalStore` and :class:`TokenStore`) plus two implementations:

* :class:`MemoryCredentialStore` – dict-backed, for tests and ephemeral runs.
* :class:`DiskCredentialStore` – JSON files, one directory tree per
  :class:`~fleet_dashboard.credentials.models.PrincipalKind`.

Design goals of the disk implementation:

* **Atomicity** – writes use *temp-file + os.replace*.
* **Filename safety** – identifiers are hashed before hitting the filesystem.
* **Failure typing** – any I/O or decode problem surfaces as
  :class:`~fleet_dashboard.credentials.errors.StoreUnavailable`, never as a
  silent "not found".

All methods are coroutines; blocking file I/O is pushed to a worker thread.

Environment variables
---------------------
FLEET_STORAGE_DIR
    Base directory for all persisted data when no ``base_dir`` is given.
    Defaults to ``~/.fleet-dashboard/credentials``.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from contextlib import contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol, TypeVar, runtime_checkable

from fleet_dashboard.credentials.errors import StoreUnavailable
from fleet_dashboard.credentials.models import Principal, PrincipalKind, TokenRecord

R = TypeVar("R")

ACCESS_NAMESPACE = "access_tokens"
REGISTRATION_NAMESPACE = "registration_tokens"

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 24) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


def _read_json(path: Path) -> dict | None:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.02) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


def _principal_from_dict(data: dict[str, Any]) -> Principal:
    return Principal(
        identifier=data["identifier"],
        secret=data["secret"],
        display_email=data.get("display_email", ""),
        kind=PrincipalKind(data.get("kind", PrincipalKind.USER.value)),
    )


def _principal_to_dict(principal: Principal) -> dict[str, Any]:
    return {
        "identifier": principal.identifier,
        "secret": principal.secret,
        "display_email": principal.display_email,
        "kind": principal.kind.value,
    }


# --------------------------------------------------------------------------- #
# public interfaces                                                           #
# --------------------------------------------------------------------------- #


@runtime_checkable
class PrincipalStore(Protocol):
    """Read access to provisioned principals of one kind."""

    async def get_principal(self, identifier: str) -> Principal | None: ...
    async def exists(self, identifier: str) -> bool: ...
    async def list_principals(self) -> list[Principal]: ...
    async def add_principal(self, principal: Principal) -> None: ...


@runtime_checkable
class TokenStore(Protocol):
    """One overwritable token slot per identifier, in two namespaces."""

    # ----- access tokens --------------------------------------------------- #
    async def get_access_token(self, identifier: str) -> TokenRecord | None: ...
    async def upsert_access_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None: ...
    async def delete_access_token(self, identifier: str) -> None: ...
    async def list_access_tokens(self) -> list[TokenRecord]: ...

    # ----- registration tokens --------------------------------------------- #
    async def get_registration_token(self, identifier: str) -> TokenRecord | None: ...
    async def upsert_registration_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None: ...
    async def delete_registration_token(self, identifier: str) -> None: ...
    async def list_registration_tokens(self) -> list[TokenRecord]: ...


# --------------------------------------------------------------------------- #
# In-memory implementation                                                    #
# --------------------------------------------------------------------------- #


class MemoryCredentialStore(PrincipalStore, TokenStore):
    """Dict-backed store implementing both protocols for a single kind."""

    def __init__(self, kind: PrincipalKind = PrincipalKind.USER) -> None:
        self.kind = kind
        self._principals: dict[str, Principal] = {}
        self._tokens: dict[str, dict[str, TokenRecord]] = {
            ACCESS_NAMESPACE: {},
            REGISTRATION_NAMESPACE: {},
        }

    # ---------------- principals ----------------------------------------- #
    async def get_principal(self, identifier: str) -> Principal | None:
        return self._principals.get(identifier)

    async def exists(self, identifier: str) -> bool:
        return identifier in self._principals

    async def list_principals(self) -> list[Principal]:
        return list(self._principals.values())

    async def add_principal(self, principal: Principal) -> None:
        self._principals[principal.identifier] = principal

    # ---------------- tokens --------------------------------------------- #
    def _put(self, namespace: str, identifier: str, token_value: str, created_at: int, ttl_millis: int) -> None:
        self._tokens[namespace][identifier] = TokenRecord(
            principal_identifier=identifier,
            token_value=token_value,
            created_at=created_at,
            ttl_millis=ttl_millis,
        )

    async def get_access_token(self, identifier: str) -> TokenRecord | None:
        return self._tokens[ACCESS_NAMESPACE].get(identifier)

    async def upsert_access_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None:
        self._put(ACCESS_NAMESPACE, identifier, token_value, created_at, ttl_millis)

    async def delete_access_token(self, identifier: str) -> None:
        self._tokens[ACCESS_NAMESPACE].pop(identifier, None)

    async def list_access_tokens(self) -> list[TokenRecord]:
        return list(self._tokens[ACCESS_NAMESPACE].values())

    async def get_registration_token(self, identifier: str) -> TokenRecord | None:
        return self._tokens[REGISTRATION_NAMESPACE].get(identifier)

    async def upsert_registration_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None:
        self._put(REGISTRATION_NAMESPACE, identifier, token_value, created_at, ttl_millis)

    async def delete_registration_token(self, identifier: str) -> None:
        self._tokens[REGISTRATION_NAMESPACE].pop(identifier, None)

    async def list_registration_tokens(self) -> list[TokenRecord]:
        return list(self._tokens[REGISTRATION_NAMESPACE].values())


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskCredentialStore(PrincipalStore, TokenStore):
    """JSON-file implementation of both protocols for a single kind.

    Layout::

        <base_dir>/<kind>/principals/<hash>.json
        <base_dir>/<kind>/access_tokens/<hash>.json
        <base_dir>/<kind>/registration_tokens/<hash>.json
    """

    def __init__(
        self,
        kind: PrincipalKind,
        base_dir: str | os.PathLike | None = None,
    ) -> None:
        self.kind = kind
        self.base_dir = Path(
            base_dir
            or os.getenv("FLEET_STORAGE_DIR")
            or Path.home() / ".fleet-dashboard" / "credentials"
        ).expanduser()
        self.root = self.base_dir / kind.value
        self.root.mkdir(parents=True, exist_ok=True)

    # ---------------- plumbing ------------------------------------------- #
    async def _run(self, func: Callable[..., R], *args: Any) -> R:
        try:
            return await asyncio.to_thread(func, *args)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            # lock timeouts are OSError; malformed records raise Value/Key/TypeError
            raise StoreUnavailable(
                f"{self.kind.value} credential store failed: {type(exc).__name__}"
            ) from exc

    def _principal_path(self, identifier: str) -> Path:
        return self.root / "principals" / f"{_hash(identifier)}.json"

    def _token_path(self, namespace: str, identifier: str) -> Path:
        return self.root / namespace / f"{_hash(identifier)}.json"

    def _lock_path(self, namespace: str, identifier: str) -> Path:
        return self._token_path(namespace, identifier).with_suffix(".lock")

    # ---------------- principals (sync bodies) ---------------------------- #
    def _load_principal(self, identifier: str) -> Principal | None:
        data = _read_json(self._principal_path(identifier))
        return _principal_from_dict(data) if data is not None else None

    def _load_all_principals(self) -> list[Principal]:
        folder = self.root / "principals"
        if not folder.exists():
            return []
        found: list[Principal] = []
        for p in sorted(folder.glob("*.json")):
            data = _read_json(p)
            if data is not None:
                found.append(_principal_from_dict(data))
        return found

    def _save_principal(self, principal: Principal) -> None:
        _atomic_write(self._principal_path(principal.identifier), _principal_to_dict(principal))

    # ---------------- tokens (sync bodies) -------------------------------- #
    def _load_token(self, namespace: str, identifier: str) -> TokenRecord | None:
        data = _read_json(self._token_path(namespace, identifier))
        return TokenRecord(**data) if data is not None else None

    def _load_all_tokens(self, namespace: str) -> list[TokenRecord]:
        folder = self.root / namespace
        if not folder.exists():
            return []
        records: list[TokenRecord] = []
        for p in sorted(folder.glob("*.json")):
            data = _read_json(p)
            if data is not None:
                records.append(TokenRecord(**data))
        return records

    def _save_token(
        self, namespace: str, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None:
        record = TokenRecord(
            principal_identifier=identifier,
            token_value=token_value,
            created_at=created_at,
            ttl_millis=ttl_millis,
        )
        with _file_lock(self._lock_path(namespace, identifier)):
            _atomic_write(self._token_path(namespace, identifier), asdict(record))

    def _remove_token(self, namespace: str, identifier: str) -> None:
        with _file_lock(self._lock_path(namespace, identifier)):
            self._token_path(namespace, identifier).unlink(missing_ok=True)

    # ---------------- PrincipalStore -------------------------------------- #
    async def get_principal(self, identifier: str) -> Principal | None:
        return await self._run(self._load_principal, identifier)

    async def exists(self, identifier: str) -> bool:
        return await self._run(self._principal_path(identifier).exists)

    async def list_principals(self) -> list[Principal]:
        return await self._run(self._load_all_principals)

    async def add_principal(self, principal: Principal) -> None:
        await self._run(self._save_principal, principal)

    # ---------------- TokenStore ------------------------------------------ #
    async def get_access_token(self, identifier: str) -> TokenRecord | None:
        return await self._run(self._load_token, ACCESS_NAMESPACE, identifier)

    async def upsert_access_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None:
        await self._run(self._save_token, ACCESS_NAMESPACE, identifier, token_value, created_at, ttl_millis)

    async def delete_access_token(self, identifier: str) -> None:
        await self._run(self._remove_token, ACCESS_NAMESPACE, identifier)

    async def list_access_tokens(self) -> list[TokenRecord]:
        return await self._run(self._load_all_tokens, ACCESS_NAMESPACE)

    async def get_registration_token(self, identifier: str) -> TokenRecord | None:
        return await self._run(self._load_token, REGISTRATION_NAMESPACE, identifier)

    async def upsert_registration_token(
        self, identifier: str, token_value: str, created_at: int, ttl_millis: int
    ) -> None:
        await self._run(
            self._save_token, REGISTRATION_NAMESPACE, identifier, token_value, created_at, ttl_millis
        )

    async def delete_registration_token(self, identifier: str) -> None:
        await self._run(self._remove_token, REGISTRATION_NAMESPACE, identifier)

    async def list_registration_tokens(self) -> list[TokenRecord]:
        return await self._run(self._load_all_tokens, REGISTRATION_NAMESPACE)
