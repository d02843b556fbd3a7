"""Lookup of remote clients by provider id."""

from __future__ import annotations

from eventsync.core.config import AppConfig, ProviderModel, load_config
from eventsync.core.exceptions import RemoteUnavailableError
from eventsync.sync.ratelimit import RateLimitCoordinator

from .base import RemoteClient
from .calendly import CalendlyClient


class ClientRegistry:
    """Builds one client per configured provider, sharing a coordinator."""

    _client_map: dict[str, type[RemoteClient]] = {
        "calendly": CalendlyClient,
    }

    def __init__(
        self,
        config: AppConfig | None = None,
        coordinator: RateLimitCoordinator | None = None,
    ) -> None:
        self._config = config or load_config()
        self._coordinator = coordinator
        self._instances: dict[str, RemoteClient] = {}

    def provider(self, provider_id: str) -> ProviderModel:
        provider = self._config.get_provider(provider_id)
        if provider is None:
            raise RemoteUnavailableError(provider_id, message="Provider not configured")
        return provider

    def get_client(self, provider_id: str) -> RemoteClient:
        if provider_id not in self._instances:
            provider = self.provider(provider_id)
            client_cls = self._client_map.get(provider.id)
            if not client_cls:
                raise RemoteUnavailableError(provider.id, message="No client configured")
            self._instances[provider.id] = client_cls(provider, self._coordinator)
        return self._instances[provider_id]

    def register(self, provider_id: str, client: RemoteClient) -> None:
        self._instances[provider_id] = client
