import time
from datetime import datetime, timezone

from fastapi import APIRouter

from meet_translator.app.core.config import settings
from meet_translator.app.services.session_mgr import session_manager

router = APIRouter()

STARTED_AT = time.monotonic()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED_AT,
    }


@router.get("/status")
def status():
    """服务信息和当前会话数"""
    return {
        "service": "Meet Translator Backend",
        "version": settings.VERSION,
        "environment": settings.APP_ENV,
        "active_sessions": len(session_manager.active_sessions()),
    }
