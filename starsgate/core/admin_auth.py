"""
Operator authentication for manual payment confirmation.

X-Admin-Key shared secret, compared in constant time.
Without ADMIN_KEY configured every admin call is refused.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request


@dataclass
class AdminActor:
    """Represents an authenticated operator."""
    actor_id: str  # "key:<hash prefix>"
    auth_mechanism: str = "x_admin_key"


def get_admin_key(request: Request) -> Optional[str]:
    settings = request.app.state.settings
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_key(request)
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode("utf-8"), expected_key.encode("utf-8")):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"key:{key_hash}")


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.
    Raises HTTPException if authentication fails.

    Usage:
        @router.post("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    if not get_admin_key(request):
        raise HTTPException(
            status_code=503,
            detail="Admin authentication not configured",
        )

    actor = verify_admin_key(request)
    if not actor:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return actor
