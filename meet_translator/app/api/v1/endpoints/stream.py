from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from pydantic import ValidationError
import asyncio
import uuid

from meet_translator.app.core.config import settings
from meet_translator.app.core.errors import MeetTranslatorError
from meet_translator.app.core.logger import logger
from meet_translator.app.schemas.pipeline import AudioChunk, SessionConfig
from meet_translator.app.schemas.protocol import ControlMessage, ServerMessage
from meet_translator.app.services.pipeline import PipelineEvent
from meet_translator.app.services.session_mgr import session_manager

router = APIRouter()

# 流水线事件 -> 客户端消息类型
EVENT_MESSAGE_TYPES = {
    PipelineEvent.PARTIAL_RECOGNITION: "stt_partial",
    PipelineEvent.FINAL_RECOGNITION: "stt_result",
    PipelineEvent.TRANSLATIONS: "translations",
    PipelineEvent.SYNTHESIZED_AUDIO: "tts_results",
    PipelineEvent.SUBTITLES: "subtitles",
}


def _to_data(payload):
    if isinstance(payload, list):
        return [_to_data(item) for item in payload]
    if hasattr(payload, "model_dump"):
        return payload.model_dump(mode="json")
    return payload


async def send_message(websocket: WebSocket, message: ServerMessage):
    if websocket.client_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.send_text(message.model_dump_json(exclude_none=True))
    except Exception as e:
        # 发送失败但不影响处理流程
        logger.debug(f"WebSocket send skipped (closed): {e}")


async def send_error(websocket: WebSocket, error: str, code: str = None):
    await send_message(websocket, ServerMessage(type="error", error=error, code=code))


def build_listeners(websocket: WebSocket):
    """把流水线事件转发给客户端"""
    listeners = {}

    for event, msg_type in EVENT_MESSAGE_TYPES.items():

        async def forward(payload, msg_type=msg_type):
            await send_message(
                websocket, ServerMessage(type=msg_type, data=_to_data(payload))
            )

        listeners[event] = forward

    async def forward_error(message):
        await send_error(websocket, str(message), code="PIPELINE_ERROR")

    listeners[PipelineEvent.ERROR] = forward_error
    return listeners


async def handle_start_meeting(websocket: WebSocket, client_id: str, raw_config):
    try:
        config = SessionConfig.model_validate(raw_config or {})
    except ValidationError as e:
        logger.warning(f"Invalid meeting config from {client_id}: {e}")
        await send_error(websocket, f"Invalid meeting config: {e}", code="INVALID_INPUT")
        return

    logger.info(f"Starting meeting for {client_id}: {config.meeting_url}")
    try:
        await session_manager.create_session(
            client_id, config, listeners=build_listeners(websocket)
        )
    except MeetTranslatorError as e:
        logger.error(f"Failed to start meeting for {client_id}: {e}")
        await send_error(websocket, e.message, code=e.error_code)
        return

    await send_message(websocket, ServerMessage(type="meeting_started", client_id=client_id))


async def handle_stop_meeting(websocket: WebSocket, client_id: str):
    logger.info(f"Stopping meeting for {client_id}")
    stats = await session_manager.remove_session(client_id)
    await send_message(
        websocket,
        ServerMessage(type="meeting_stopped", client_id=client_id, data=stats),
    )


async def handle_audio(websocket: WebSocket, client_id: str, data: bytes):
    pipeline = session_manager.get_pipeline(client_id)
    if pipeline is None:
        logger.warning(f"No active pipeline for client {client_id}")
        return

    try:
        chunk = AudioChunk(data=data)
    except ValidationError as e:
        await send_error(websocket, f"Invalid audio chunk: {e}", code="INVALID_INPUT")
        return

    # 在接收循环中 await，保证同一会话的分片按顺序处理
    await pipeline.process_chunk(chunk)


async def handle_control(websocket: WebSocket, client_id: str, text: str):
    try:
        message = ControlMessage.model_validate_json(text)
    except ValidationError as e:
        logger.error(f"Failed to parse message: {e}")
        await send_error(websocket, "Invalid message format", code="INVALID_INPUT")
        return

    logger.debug(f"Received message {message.type} from {client_id}")

    if message.type == "start_meeting":
        await handle_start_meeting(websocket, client_id, message.config)
    elif message.type == "stop_meeting":
        await handle_stop_meeting(websocket, client_id)
    elif message.type == "ping":
        await send_message(websocket, ServerMessage(type="pong"))
    else:
        logger.warning(f"Unknown message type: {message.type}")
        await send_error(
            websocket, f"Unknown message type: {message.type}", code="INVALID_INPUT"
        )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client_id = str(uuid.uuid4())
    logger.info(f"Client connected: {client_id}")
    await send_message(websocket, ServerMessage(type="connected", client_id=client_id))

    try:
        while True:
            try:
                message = await asyncio.wait_for(
                    websocket.receive(), timeout=settings.WS_IDLE_PING_SECONDS
                )
            except asyncio.TimeoutError:
                await send_message(websocket, ServerMessage(type="ping"))
                continue

            if message["type"] == "websocket.disconnect":
                break

            try:
                if message.get("bytes") is not None:
                    await handle_audio(websocket, client_id, message["bytes"])
                elif message.get("text"):
                    await handle_control(websocket, client_id, message["text"])
            except Exception as e:
                logger.error(f"Error handling message from {client_id}: {e}")
                await send_error(websocket, "Failed to process message")

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        logger.info(f"Client disconnected: {client_id}")
        await session_manager.remove_session(client_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except Exception:
                pass
