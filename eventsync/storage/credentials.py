"""Storage helpers for tenant access tokens handed over by the OAuth flow."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, update

from .database import session_scope
from .models import TenantCredential


@dataclass(frozen=True)
class AccessGrant:
    access_token: str
    user_uri: str | None


def upsert_access_token(
    tenant_id: str, provider: str, access_token: str, user_uri: str | None = None
) -> None:
    """Insert or replace the access token a tenant granted for a provider."""
    with session_scope() as session:
        existing = session.scalar(
            select(TenantCredential)
            .where(TenantCredential.tenant_id == tenant_id)
            .where(TenantCredential.provider == provider)
        )
        if existing:
            values = {"access_token": access_token}
            if user_uri is not None:
                values["user_uri"] = user_uri
            session.execute(
                update(TenantCredential).where(TenantCredential.id == existing.id).values(**values)
            )
        else:
            session.add(
                TenantCredential(
                    tenant_id=tenant_id,
                    provider=provider,
                    access_token=access_token,
                    user_uri=user_uri,
                )
            )


def get_access_grant(tenant_id: str, provider: str) -> AccessGrant | None:
    """Return the stored grant for the tenant, if any."""
    with session_scope() as session:
        row = session.execute(
            select(TenantCredential.access_token, TenantCredential.user_uri)
            .where(TenantCredential.tenant_id == tenant_id)
            .where(TenantCredential.provider == provider)
        ).first()
        if row is None or not row.access_token:
            return None
        return AccessGrant(access_token=row.access_token, user_uri=row.user_uri)


def remember_user_uri(tenant_id: str, provider: str, user_uri: str) -> None:
    """Cache the provider account URI resolved on first use."""
    with session_scope() as session:
        session.execute(
            update(TenantCredential)
            .where(TenantCredential.tenant_id == tenant_id)
            .where(TenantCredential.provider == provider)
            .values(user_uri=user_uri)
        )


def delete_access_token(tenant_id: str, provider: str) -> bool:
    """Delete a stored grant if present."""
    with session_scope() as session:
        credential = session.scalar(
            select(TenantCredential)
            .where(TenantCredential.tenant_id == tenant_id)
            .where(TenantCredential.provider == provider)
        )
        if not credential:
            return False
        session.delete(credential)
        return True


__all__ = [
    "AccessGrant",
    "delete_access_token",
    "get_access_grant",
    "remember_user_uri",
    "upsert_access_token",
]
