"""Keycloak client supplying the access goal state.

This module provides the KeycloakClient class, which handles:

- Admin token acquisition and rotation
- Listing members of the authorized group as AccessUser records
- Listing and registering admin-event webhooks
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from fobsync.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

MEMBERS_PAGE_SIZE = 50
ADMIN_CLIENT_ID = "admin-cli"
KEYFOB_ATTRIBUTE = "keyfobID"


class IdentityProviderError(RuntimeError):
    """Raised when a Keycloak request fails or returns an unexpected status."""


@dataclass(frozen=True)
class KeycloakConfig:
    """Immutable configuration for Keycloak operations."""

    base_url: str
    realm: str
    username: str
    password: str
    group_id: str
    timeout_seconds: float


@dataclass(frozen=True)
class AccessUser:
    """A member of the authorized group with an assigned keyfob."""

    uuid: str
    name: str
    keyfob_number: int


@dataclass(frozen=True)
class Webhook:
    """A webhook registration as exposed by the Keycloak webhook extension."""

    url: str
    enabled: bool = True
    event_types: list[str] = field(default_factory=list)
    id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Webhook:
        return cls(
            id=payload.get("id"),
            url=payload.get("url", ""),
            enabled=bool(payload.get("enabled", False)),
            event_types=list(payload.get("eventTypes") or []),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "enabled": self.enabled,
            "url": self.url,
            "eventTypes": list(self.event_types),
        }
        if self.id:
            payload["id"] = self.id
        return payload


def access_user_from_payload(payload: Mapping[str, Any]) -> AccessUser | None:
    """Build an AccessUser from a Keycloak user representation.

    Returns None for users without an id, without attributes, or without a
    usable (non-zero, numeric) keyfob number.
    """

    user_id = payload.get("id")
    attributes = payload.get("attributes")
    if not user_id or not attributes:
        return None

    values = attributes.get(KEYFOB_ATTRIBUTE) or [""]
    try:
        keyfob_number = int(values[0])
    except (TypeError, ValueError):
        return None
    if keyfob_number == 0:
        return None

    return AccessUser(
        uuid=user_id,
        name=f"{payload.get('firstName') or ''} {payload.get('lastName') or ''}",
        keyfob_number=keyfob_number,
    )


def load_keycloak_config() -> KeycloakConfig:
    """Build configuration object from global settings."""

    return KeycloakConfig(
        base_url=(settings.keycloak_url or "").rstrip("/"),
        realm=settings.keycloak_realm,
        username=settings.keycloak_user or "",
        password=settings.keycloak_password or "",
        group_id=settings.authorized_group_id or "",
        timeout_seconds=float(settings.keycloak_timeout_seconds),
    )


class KeycloakClient:
    """HTTP client wrapper for the Keycloak admin API."""

    def __init__(
        self,
        config: KeycloakConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_keycloak_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

        # use _ensure_token to access these
        self._token_lock = asyncio.Lock()
        self._token: str | None = None
        self._token_expires_in = 0.0
        self._token_fetched_at = 0.0

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def _ensure_token(self) -> str:
        """Return a cached admin token, logging in again after half its lifetime."""

        async with self._token_lock:
            age = time.monotonic() - self._token_fetched_at
            if self._token is not None and age < self._token_expires_in / 2:
                return self._token

            client = await self._ensure_client()
            try:
                response = await client.post(
                    f"/realms/{self.config.realm}/protocol/openid-connect/token",
                    data={
                        "grant_type": "password",
                        "client_id": ADMIN_CLIENT_ID,
                        "username": self.config.username,
                        "password": self.config.password,
                    },
                )
            except httpx.HTTPError as exc:
                raise IdentityProviderError(f"getting token: {exc}") from exc
            if response.status_code != httpx.codes.OK:
                raise IdentityProviderError(
                    f"getting token: Keycloak responded with {response.status_code}"
                )

            payload = response.json()
            self._token = payload["access_token"]
            self._token_expires_in = float(payload.get("expires_in", 0))
            self._token_fetched_at = time.monotonic()

            logger.info(
                "fetched new auth token from keycloak - will expire in %d seconds",
                self._token_expires_in,
            )
            return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_data: Any | None = None,
    ) -> httpx.Response:
        token = await self._ensure_token()
        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                path,
                params=params,
                json=json_data,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"Keycloak request {method} {path} failed: {exc}") from exc

        if not response.is_success:
            raise IdentityProviderError(
                f"Keycloak responded with {response.status_code} for {method} {path}: {response.text}"
            )
        return response

    async def list_users(self) -> list[AccessUser]:
        """List every member of the authorized group that has a keyfob."""

        path = f"/admin/realms/{self.config.realm}/groups/{self.config.group_id}/members"
        first = 0
        users: list[AccessUser] = []
        while True:
            response = await self._request(
                "GET", path, params={"first": first, "max": MEMBERS_PAGE_SIZE}
            )
            page = response.json() or []
            if not page:
                break
            first += len(page)

            for item in page:
                user = access_user_from_payload(item)
                if user is None:
                    continue
                users.append(user)

        return users

    async def list_webhooks(self) -> list[Webhook]:
        response = await self._request("GET", f"/realms/{self.config.realm}/webhooks")
        return [Webhook.from_payload(item) for item in response.json() or []]

    async def create_webhook(self, webhook: Webhook) -> None:
        await self._request(
            "POST",
            f"/realms/{self.config.realm}/webhooks",
            json_data=webhook.to_payload(),
        )

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _KeycloakClientSingleton:
    """Singleton wrapper for KeycloakClient."""

    _instance: KeycloakClient | None = None

    @classmethod
    def get_instance(cls) -> KeycloakClient:
        """Get or create the singleton KeycloakClient instance."""
        if cls._instance is None:
            cls._instance = KeycloakClient()
        return cls._instance


def get_keycloak_client() -> KeycloakClient:
    """Return a singleton Keycloak client instance."""
    return _KeycloakClientSingleton.get_instance()


def keycloak_enabled() -> bool:
    """Return True if Keycloak is configured well enough to supply goal state."""
    return settings.keycloak_enabled
