import asyncio
import base64
import json
from enum import Enum
from typing import Optional

import websockets
from pydantic import ValidationError

from meet_translator.app.core.config import settings
from meet_translator.app.core.errors import (
    ConfigurationError,
    NotConnectedError,
    ReconnectExhaustedError,
    ServiceError,
)
from meet_translator.app.core.events import EventEmitter
from meet_translator.app.core.logger import logger
from meet_translator.app.schemas.pipeline import (
    AudioChunk,
    RecognitionResult,
    SupportedLanguage,
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SttEvent(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    RESULT = "result"
    ERROR = "error"


# 识别服务返回的语言代码 -> 系统支持的语言
LANGUAGE_CODES = {
    "ja": SupportedLanguage.JA,
    "ja-JP": SupportedLanguage.JA,
    "zh-TW": SupportedLanguage.ZH_HANT_TW,
    "zh-Hant": SupportedLanguage.ZH_HANT_TW,
    "zh-Hant-TW": SupportedLanguage.ZH_HANT_TW,
    "fr": SupportedLanguage.FR,
    "fr-FR": SupportedLanguage.FR,
}

DEFAULT_CONFIDENCE = 0.9


def backoff_delay(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """第 attempt 次重连前的等待时间 (ms)"""
    return min(base_delay_ms * (2**attempt), max_delay_ms)


class ElevenLabsSTT(EventEmitter):
    """
    ElevenLabs 实时语音识别 (WebSocket)。

    连接意外断开后按指数退避自动重连，连续失败达到上限后发出
    reconnect_exhausted 事件并停止重连。显式 disconnect() 不会触发重连。
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        fallback_language: Optional[str] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        max_reconnect_attempts: Optional[int] = None,
        result_timeout: Optional[float] = None,
        connector=None,
    ):
        super().__init__()
        self.api_key = settings.ELEVENLABS_API_KEY if api_key is None else api_key
        self.url = url or settings.ELEVENLABS_STT_WS_URL
        self.fallback_language = SupportedLanguage(
            fallback_language or settings.STT_FALLBACK_LANGUAGE
        )
        self.base_delay_ms = (
            settings.STT_RECONNECT_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms
        )
        self.max_delay_ms = (
            settings.STT_RECONNECT_MAX_DELAY_MS if max_delay_ms is None else max_delay_ms
        )
        self.max_reconnect_attempts = (
            settings.STT_MAX_RECONNECT_ATTEMPTS
            if max_reconnect_attempts is None
            else max_reconnect_attempts
        )
        self.result_timeout = result_timeout or settings.STT_TIMEOUT
        self._connector = connector or websockets.connect

        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.exhausted = False

        # 每次打开/显式关闭连接都会递增，用于识别过期的接收循环和重连任务
        self._generation = 0
        self._closing = False
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._results: asyncio.Queue = asyncio.Queue()
        self._waiting = 0

    def is_active(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def map_language_code(self, code: Optional[str]) -> SupportedLanguage:
        return LANGUAGE_CODES.get(code or "", self.fallback_language)

    async def connect(self):
        """建立连接；首次连接失败直接抛出，不在内部重试"""
        if not self.api_key:
            raise ConfigurationError(
                "ELEVENLABS_API_KEY is not set", provider="elevenlabs"
            )

        self._closing = False
        self.exhausted = False
        self._cancel_reconnect()

        if self.ws is not None:
            logger.info("Replacing existing ElevenLabs STT connection")
            # 先让旧的接收循环失效，关闭旧连接时不会触发重连
            self._generation += 1
            await self._close_socket()

        await self._open()

    async def _open(self):
        self._generation += 1
        generation = self._generation
        self.state = ConnectionState.CONNECTING
        self._drain_results()

        try:
            ws = await self._connector(
                self.url,
                additional_headers={"xi-api-key": self.api_key},
                open_timeout=self.result_timeout,
            )
        except Exception as e:
            if generation == self._generation:
                self.state = ConnectionState.DISCONNECTED
            logger.error(f"Failed to connect to ElevenLabs STT: {e}")
            raise ServiceError(
                f"STT connection failed: {e}", provider="elevenlabs"
            ) from e

        if generation != self._generation or self._closing:
            # 连接期间已被显式关闭或更新的连接取代
            await ws.close()
            return

        self.ws = ws
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        logger.info("ElevenLabs STT WebSocket connected")

        self._receive_task = asyncio.create_task(self._receive_loop(ws, generation))
        await self.emit(SttEvent.CONNECTED)

    async def _receive_loop(self, ws, generation: int):
        try:
            async for message in ws:
                await self._handle_message(message)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"ElevenLabs STT connection closed: {e}")
        except Exception as e:
            logger.error(f"STT Receive Loop Error: {e}")
        finally:
            if generation == self._generation and not self._closing:
                self.ws = None
                self.state = ConnectionState.DISCONNECTED
                logger.info("ElevenLabs STT WebSocket closed")
                await self.emit(SttEvent.DISCONNECTED)
                await self._handle_drop()

    async def _handle_drop(self):
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error("Max reconnect attempts reached for STT")
            self.exhausted = True
            error = ReconnectExhaustedError(self.reconnect_attempts, provider="elevenlabs")
            self._fail_waiters(error)
            await self.emit(SttEvent.RECONNECT_EXHAUSTED, error)
            return

        self.reconnect_attempts += 1
        delay = backoff_delay(
            self.reconnect_attempts, self.base_delay_ms, self.max_delay_ms
        )
        logger.info(
            f"Attempting to reconnect STT in {delay}ms (attempt {self.reconnect_attempts})"
        )
        await self.emit(SttEvent.RECONNECTING, self.reconnect_attempts, delay)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, self._generation)
        )

    async def _reconnect_after(self, delay_ms: int, generation: int):
        await asyncio.sleep(delay_ms / 1000)

        if self._closing or generation != self._generation:
            logger.debug("Scheduled STT reconnect superseded")
            return

        try:
            await self._open()
        except ServiceError as e:
            logger.error(f"Reconnect failed: {e}")
            if not self._closing:
                await self._handle_drop()

    def _cancel_reconnect(self):
        task, self._reconnect_task = self._reconnect_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _fail_waiters(self, error: Exception):
        for _ in range(self._waiting):
            self._results.put_nowait(error)

    def _drain_results(self) -> int:
        dropped = 0
        while not self._results.empty():
            self._results.get_nowait()
            dropped += 1
        if dropped:
            logger.debug(f"Dropped {dropped} stale STT result(s)")
        return dropped

    @staticmethod
    def _pick_result(items):
        """同一时刻到达的多条结果中，final 优先，其次取最新的 partial"""
        results = [item for item in items if not isinstance(item, Exception)]
        if not results:
            raise items[0]
        finals = [r for r in results if r.is_final]
        return (finals or results)[-1]

    async def _handle_message(self, raw):
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse STT message: {e}")
            return

        msg_type = message.get("type")
        if msg_type == "transcription":
            confidence = message.get("confidence")
            if confidence is None:
                confidence = DEFAULT_CONFIDENCE
            try:
                result = RecognitionResult(
                    text=message.get("text") or "",
                    language=self.map_language_code(message.get("language")),
                    is_final=bool(message.get("is_final", False)),
                    confidence=min(max(float(confidence), 0.0), 1.0),
                    speaker_id=message.get("speaker_id"),
                )
            except (ValidationError, TypeError, ValueError) as e:
                logger.error(f"Invalid STT transcription message: {e}")
                return

            if result.is_final:
                logger.debug(f"STT final result [{result.language.value}]: {result.text}")

            # 没有等待中的 transcribe() 时只发事件，不积压到结果队列
            if self._waiting > 0:
                self._results.put_nowait(result)
            await self.emit(SttEvent.RESULT, result)

        elif msg_type == "error":
            error = ServiceError(
                f"STT error from server: {message.get('error')}", provider="elevenlabs"
            )
            logger.error(str(error))
            self._fail_waiters(error)
            await self.emit(SttEvent.ERROR, error)

    async def send_chunk(self, chunk: AudioChunk):
        if self.exhausted:
            raise ReconnectExhaustedError(self.reconnect_attempts, provider="elevenlabs")
        if self.state != ConnectionState.CONNECTED or self.ws is None:
            raise NotConnectedError()

        message = {
            "type": "audio",
            "audio": base64.b64encode(chunk.data).decode("ascii"),
            "timestamp": chunk.timestamp,
        }
        try:
            await self.ws.send(json.dumps(message))
        except Exception as e:
            logger.error(f"Failed to send audio chunk to STT: {e}")
            raise ServiceError(
                f"Failed to send audio chunk: {e}", provider="elevenlabs"
            ) from e

    async def transcribe(self, chunk: AudioChunk) -> RecognitionResult:
        """发送音频分片并等待该分片对应的识别结果 (partial 或 final)

        发送前清空之前积压的结果，超时后迟到的结果不会被下一个分片取到。
        """
        self._drain_results()

        self._waiting += 1
        try:
            await self.send_chunk(chunk)
            items = [
                await asyncio.wait_for(self._results.get(), timeout=self.result_timeout)
            ]
            # 同一批到达的后续结果 (例如 partial 之后紧跟的 final)
            while not self._results.empty():
                items.append(self._results.get_nowait())
        except asyncio.TimeoutError as e:
            raise ServiceError(
                f"No recognition result within {self.result_timeout}s",
                provider="elevenlabs",
            ) from e
        finally:
            self._waiting -= 1

        item = self._pick_result(items)
        if chunk.speaker_id and not item.speaker_id:
            item = item.model_copy(update={"speaker_id": chunk.speaker_id})
        return item

    async def _close_socket(self):
        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing STT WebSocket: {e}")

        task, self._receive_task = self._receive_task, None
        if task and not task.done():
            task.cancel()

    async def disconnect(self):
        """显式关闭连接，同时取消已排队的重连"""
        self._closing = True
        self._generation += 1
        self._cancel_reconnect()

        self.state = ConnectionState.DISCONNECTED
        await self._close_socket()
        self._drain_results()
        logger.info("ElevenLabs STT disconnected")
