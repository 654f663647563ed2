"""
Wiring for one application: the shared identity provider and approval
workflow, plus a builder for per-context session managers.

Each HTTP request gets its own IdentityClient + SessionManager pair built
from its bearer token; nothing about a signed-in user is shared between
requests.
"""

from __future__ import annotations

from flask import current_app

from .approval_service import ApprovalWorkflow
from .identity_client import IdentityClient
from .identity_provider import IdentityProvider
from .role_resolver import RoleResolver
from .route_guard import RouteGuard
from .session_manager import SessionManager
from .stores import ProfileStore, RoleStore


EXTENSION_KEY = "stationauth"


class AuthServices:
    def __init__(self, provider: IdentityProvider, workflow: ApprovalWorkflow, *, sign_in_path: str = "/auth"):
        self.provider = provider
        self.workflow = workflow
        self.sign_in_path = sign_in_path

    @classmethod
    def from_config(cls, config) -> "AuthServices":
        provider = IdentityProvider.from_config(config)
        workflow = ApprovalWorkflow(provider, temp_password_length=config["TEMP_PASSWORD_LENGTH"])
        return cls(provider, workflow, sign_in_path=config["SIGN_IN_PATH"])

    def session_for(
        self,
        access_token: str | None = None,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> SessionManager:
        """An initialized SessionManager for one client context."""
        client = IdentityClient(
            self.provider,
            access_token,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        manager = SessionManager(client, RoleResolver(RoleStore()), ProfileStore())
        manager.initialize()
        return manager

    def guard_for(self, manager: SessionManager) -> RouteGuard:
        return RouteGuard(manager, sign_in_path=self.sign_in_path)


def init_app(app) -> AuthServices:
    services = AuthServices.from_config(app.config)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> AuthServices:
    return current_app.extensions[EXTENSION_KEY]
