"""Security utilities and authentication dependencies"""
import json
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Request

from app.core.config import settings
from app.core.logging import api_access_logger, security_logger


def verify_access_token(token: str) -> Optional[str]:
    """Verify a Supabase access token and return the user id (JWT ``sub``)"""
    if not settings.SUPABASE_JWT_SECRET:
        security_logger.error("SUPABASE_JWT_SECRET is not configured; rejecting bearer token")
        return None
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except jwt.InvalidTokenError as e:
        security_logger.info(f"Rejected bearer token: {type(e).__name__}")
        return None
    return payload.get("sub")


def require_auth(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> str:
    """Dependency: Require a bearer token, return user_id"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing or invalid authorization header")

    token = authorization[len("Bearer "):].strip()
    user_id = verify_access_token(token)
    if not user_id:
        security_logger.warning(
            f"Authentication failed - IP: {get_client_ip(request)}, Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid or expired token")

    request.state.user_id = user_id
    return user_id


def get_client_ip(request: Request) -> str:
    """Client address, honouring the first X-Forwarded-For hop"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None
):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "user_id": getattr(request.state, "user_id", None),
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
