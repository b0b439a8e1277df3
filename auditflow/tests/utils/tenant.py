from __future__ import annotations

from auditflow.domain.tenant import TenantContext


def tenant_headers(tenant: TenantContext) -> dict[str, str]:
    # Gateway headers the API trusts for tenant identity.
    headers = {
        "X-User-Id": tenant.user_id,
        "X-User-Email": tenant.user_email,
        "X-Org-Id": tenant.org_id,
        "X-Org-Slug": tenant.org_slug,
    }
    if tenant.user_name:
        headers["X-User-Name"] = tenant.user_name
    if tenant.org_name:
        headers["X-Org-Name"] = tenant.org_name
    if tenant.org_email:
        headers["X-Org-Email"] = tenant.org_email
    return headers
