"""
Security and Authentication
User sessions (Supabase JWT) and the scheduler's shared bearer

SECURITY FEATURES:
- JWT validation via Supabase Auth
- Scheduler bearer compared in constant time (authenticate_scheduler)
- Missing scheduler secret rejects every call (fail closed)
"""
import logging
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

from tether.core.dependencies import get_supabase

logger = logging.getLogger(__name__)

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# JWT AUTHENTICATION (Supabase)
# ============================================================================

async def get_current_user_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, str]:
    """
    Validate the user's Supabase JWT.

    Returns:
        dict with user_id and email
    """
    if not credentials:
        logger.warning("No authorization credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required"
        )

    try:
        response = supabase.auth.get_user(credentials.credentials)

        if not response or not response.user:
            logger.warning("JWT validation failed: no user returned")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token"
            )

        user = response.user
        logger.info(f"✅ User authenticated: {sanitize_for_logging(user.email or '')}")
        return {"user_id": user.id, "email": user.email or ""}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"JWT validation error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed"
        )


async def get_current_user_id(
    user_context: Dict[str, str] = Depends(get_current_user_context)
) -> str:
    return user_context["user_id"]


# ============================================================================
# SCHEDULER BEARER
# ============================================================================

async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Optional[str]:
    """Raw bearer value; the orchestrator decides whether it is valid."""
    return credentials.credentials if credentials else None


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Sanitize sensitive data for logging (prevent PII leakage).

    Example:
        "user@example.com" -> "u***@example.com"
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length] + "..."

    if "@" in text:
        local, _, domain = text.partition("@")
        masked_local = local[0] + "***" if len(local) > 1 else local
        text = f"{masked_local}@{domain}"

    return text
