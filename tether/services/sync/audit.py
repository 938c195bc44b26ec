"""
Integration audit log
Best-effort structured record of sync and connect failures

Errors are logged (always) and inserted into integration_logs (best effort:
a failed insert is logged and dropped, it never masks the original error).
Anything that looks like a credential is redacted first.
"""
import logging
from typing import Any, Dict, Optional

from supabase import Client

logger = logging.getLogger(__name__)

LOGS_TABLE = "integration_logs"

MAX_STR = 2000
MAX_LIST = 200
SECRET_MARKERS = ("token", "secret", "password", "authorization", "cookie", "code", "verifier")


def normalize_error(err: Any) -> Dict[str, Any]:
    if isinstance(err, BaseException):
        out: Dict[str, Any] = {"name": type(err).__name__, "message": str(err) or "Unknown error"}
        for attr in ("status", "body", "provider"):
            value = getattr(err, attr, None)
            if value is not None:
                out[attr] = value
        if err.__cause__ is not None:
            out["cause"] = f"{type(err.__cause__).__name__}: {err.__cause__}"
        return out
    if isinstance(err, str):
        return {"name": "Error", "message": err}
    return {"name": "Error", "message": repr(err)}


def redact_secrets(value: Any) -> Any:
    if isinstance(value, str):
        return value[:MAX_STR] + "…" if len(value) > MAX_STR else value
    if isinstance(value, (list, tuple)):
        return [redact_secrets(v) for v in value[:MAX_LIST]]
    if isinstance(value, dict):
        out = {}
        for key, v in value.items():
            lowered = str(key).lower()
            if any(marker in lowered for marker in SECRET_MARKERS):
                out[key] = "[redacted]"
            else:
                out[key] = redact_secrets(v)
        return out
    return value


class IntegrationAuditLog:

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase

    async def record(
        self,
        user_id: str,
        provider: str,
        stage: str,
        error: Any,
        account_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        normalized = normalize_error(error)
        message = f"[{provider}] {stage}: {normalized['message']}"
        entry = redact_secrets({
            "user_id": user_id,
            "integration_account_id": account_id,
            "provider": provider,
            "stage": stage,
            "details": details or {},
            "error": normalized,
        })

        logger.error(message, extra={"integration": entry})

        if self.supabase is None:
            return

        try:
            self.supabase.table(LOGS_TABLE).insert({
                "user_id": user_id,
                "provider": provider,
                "stage": stage,
                "message": message[:MAX_STR],
                "integration_account_id": account_id,
                "details": {"error": entry["error"], **entry["details"]},
            }).execute()
        except Exception as e:
            logger.warning(f"Could not persist integration log ({stage}): {e}")


def scrub_sentry_event(event: Dict[str, Any], hint: Any = None) -> Dict[str, Any]:
    """
    Sentry before_send hook.

    Callback URLs carry ?code=&state= and requests carry the handshake
    cookie and bearer, so none of them leave the process.
    """
    request = event.get("request")
    if isinstance(request, dict):
        request.pop("query_string", None)
        request.pop("cookies", None)
        if isinstance(request.get("url"), str):
            request["url"] = request["url"].split("?", 1)[0]
        if isinstance(request.get("headers"), dict):
            request["headers"] = redact_secrets(request["headers"])
    if isinstance(event.get("extra"), dict):
        event["extra"] = redact_secrets(event["extra"])
    return event
