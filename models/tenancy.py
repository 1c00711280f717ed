"""Tenant scoping for repository queries."""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TenantScope:
    """Explicit tenant filter handed to the Database.

    Background workers run without an identity and process every tenant;
    anything acting for a user is pinned to that user's tenant.
    """
    tenant_id: Optional[int] = None

    @classmethod
    def all_tenants(cls):
        return cls(None)

    @classmethod
    def for_tenant(cls, tenant_id: int):
        if tenant_id is None or tenant_id <= 0:
            raise ValueError("tenant_id must be a positive integer")
        return cls(tenant_id)

    @property
    def filtering_enabled(self) -> bool:
        return self.tenant_id is not None

    def clause(self, column="tenant_id"):
        """SQL fragment and params restricting `column` to the scoped tenant."""
        if not self.filtering_enabled:
            return "", []
        return f" AND {column} = ?", [self.tenant_id]
