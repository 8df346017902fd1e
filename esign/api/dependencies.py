"""Request-scoped dependencies supplied by the surrounding platform."""
from typing import Optional
from fastapi import Header, HTTPException, Request, status


def get_acting_user(x_user_id: Optional[str] = Header(None)) -> str:
    """
    The authenticated user, as asserted by the upstream identity service.

    Authentication happens before requests reach this service; the id is trusted.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id.strip()


def get_client_ip(request: Request, x_forwarded_for: Optional[str] = Header(None)) -> Optional[str]:
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_user_agent(user_agent: Optional[str] = Header(None)) -> Optional[str]:
    return user_agent


def get_user_name(x_user_name: Optional[str] = Header(None)) -> Optional[str]:
    """The acting user's display name, when the identity service supplies one."""
    return x_user_name.strip() if x_user_name and x_user_name.strip() else None
