from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    # Identity resolved upstream (gateway/session); never taken from request bodies.
    user_id: str
    user_email: str
    org_id: str
    org_slug: str
    user_name: str | None = None
    org_name: str | None = None
    org_email: str | None = None

    @property
    def quota_key(self) -> str:
        # Quota is billed to the organization email when one is on file.
        return self.org_email or self.user_email

    def organization(self) -> dict[str, str | None]:
        return {"id": self.org_id, "slug": self.org_slug, "name": self.org_name}
