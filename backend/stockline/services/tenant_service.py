"""
Tenant resolution.

The tenant is the store the authenticated user is bound to. @require_auth
sets g.current_user (the user record, without password hash); the data
adapter resolves the store from it on every call.

USAGE:
    from stockline.services.tenant_service import current_principal

    DataAdapter(local_store, remote, principal_resolver=current_principal)
"""

from __future__ import annotations

from flask import g, has_request_context


def current_principal() -> dict | None:
    """The authenticated user record, or None outside an authenticated request."""
    if not has_request_context():
        return None
    return getattr(g, "current_user", None)
