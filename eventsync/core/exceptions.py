"""Custom exception types."""

from __future__ import annotations


class RemoteUnavailableError(Exception):
    """Raised when the remote provider cannot satisfy a request."""

    def __init__(
        self,
        provider_id: str,
        message: str = "Provider unavailable",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message
        self.status_code = status_code


class RateLimitedError(RemoteUnavailableError):
    """Raised when the provider signals that its request budget is exhausted."""

    def __init__(self, provider_id: str, status_code: int | None = None) -> None:
        super().__init__(provider_id, message="Provider rate limit hit", status_code=status_code)


class AuthenticationRequiredError(RemoteUnavailableError):
    """Raised when a tenant has no usable access token for the provider."""

    def __init__(self, provider_id: str, tenant_id: str | None = None) -> None:
        super().__init__(provider_id, message="Provider credentials missing")
        self.tenant_id = tenant_id


class TenantConfigurationError(Exception):
    """Raised when a tenant cannot be synced because of its own setup."""

    def __init__(self, tenant_id: str, message: str) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
        self.message = message


class StoreUnavailableError(Exception):
    """Raised when the local store cannot be reached at all."""

    def __init__(self, message: str = "Local store unavailable") -> None:
        super().__init__(message)
        self.message = message


class NoConnectedTenantsError(Exception):
    """Raised when no connected integration matches a sync request."""

    def __init__(self, provider_id: str, tenant_id: str | None = None) -> None:
        super().__init__("No connected integrations found")
        self.provider_id = provider_id
        self.tenant_id = tenant_id


class WebhookSignatureError(Exception):
    """Raised when a webhook delivery cannot be authenticated."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
