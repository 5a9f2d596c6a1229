from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from meet_translator.app.schemas.pipeline import now_ms


class ControlMessage(BaseModel):
    """客户端发送的 JSON 控制消息"""

    type: str  # "start_meeting" | "stop_meeting" | "ping"
    config: Optional[Dict[str, Any]] = None  # start_meeting 时的会话配置，单独校验


class ServerMessage(BaseModel):
    type: str
    client_id: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None
    code: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
