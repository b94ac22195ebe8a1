from __future__ import annotations

from dataclasses import dataclass

from fleet_dashboard.credentials.models import PrincipalKind
from fleet_dashboard.credentials.registration import RegistrationIssuer
from fleet_dashboard.credentials.service import CredentialLifecycleManager
from fleet_dashboard.credentials.store import PrincipalStore


@dataclass(frozen=True)
class MainAppContext:
    """
    Context holding the credential engines built once at server startup
    and handed to every route through ``request.app.state``.
    """

    managers: dict[PrincipalKind, CredentialLifecycleManager]
    registration: RegistrationIssuer
    user_directory: PrincipalStore
    sweep_interval_seconds: int = 0

    def manager(self, kind: PrincipalKind) -> CredentialLifecycleManager:
        return self.managers[kind]
