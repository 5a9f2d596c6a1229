from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from meet_translator.app.core.logger import logger
from meet_translator.app.schemas.pipeline import SessionConfig
from meet_translator.app.services.pipeline import PipelineEvent, SessionPipeline
from meet_translator.app.services.stt_elevenlabs import ElevenLabsSTT, SttEvent
from meet_translator.app.services.translation_google import GoogleTranslation
from meet_translator.app.services.tts_elevenlabs import ElevenLabsTTS


@dataclass
class SessionServices:
    """一个会话独占的一组适配器"""

    stt: ElevenLabsSTT
    translation: GoogleTranslation
    tts: Optional[ElevenLabsTTS] = None


def build_services(config: SessionConfig) -> SessionServices:
    tts = ElevenLabsTTS() if config.enable_voice else None
    return SessionServices(stt=ElevenLabsSTT(), translation=GoogleTranslation(), tts=tts)


@dataclass
class Session:
    client_id: str
    config: SessionConfig
    pipeline: SessionPipeline
    services: SessionServices


class SessionManager:
    """client_id -> Session，仅由传输层在会话创建/销毁时修改"""

    def __init__(self, services_factory: Callable[[SessionConfig], SessionServices] = None):
        self.services_factory = services_factory or build_services
        self.sessions: Dict[str, Session] = {}

    async def create_session(
        self, client_id: str, config: SessionConfig, listeners: Dict[str, Callable] = None
    ) -> SessionPipeline:
        """创建适配器、连接识别服务并启动流水线

        Args:
            client_id: 客户端连接 ID
            config: 会话配置
            listeners: {PipelineEvent: callback}，在启动前注册
        """
        if client_id in self.sessions:
            logger.warning(f"Session {client_id} already exists, replacing it")
            await self.remove_session(client_id)

        services = self.services_factory(config)

        if services.tts is not None and config.voice_settings:
            for language, profile in config.voice_settings.items():
                services.tts.set_voice_settings(language, **profile.model_dump())

        pipeline = SessionPipeline(services.stt, services.translation, services.tts)
        for event, callback in (listeners or {}).items():
            pipeline.on(event, callback)

        async def on_reconnect_exhausted(error):
            await pipeline.report_error(str(error))

        services.stt.on(SttEvent.RECONNECT_EXHAUSTED, on_reconnect_exhausted)

        try:
            await services.stt.connect()
            await pipeline.start(config)
        except Exception:
            await self._close_services(services)
            raise

        self.sessions[client_id] = Session(client_id, config, pipeline, services)
        logger.info(f"Session {client_id} started ({len(self.sessions)} active)")
        return pipeline

    def get_pipeline(self, client_id: str) -> Optional[SessionPipeline]:
        session = self.sessions.get(client_id)
        return session.pipeline if session else None

    async def remove_session(self, client_id: str) -> Optional[dict]:
        """停止流水线并释放适配器，返回延迟统计"""
        session = self.sessions.pop(client_id, None)
        if session is None:
            return None

        stats = await session.pipeline.stop()
        await self._close_services(session.services)
        logger.info(f"Session {client_id} removed ({len(self.sessions)} active)")
        return stats

    async def _close_services(self, services: SessionServices):
        try:
            await services.stt.disconnect()
        except Exception as e:
            logger.warning(f"Failed to disconnect STT: {e}")
        for client in (services.translation, services.tts):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close {type(client).__name__}: {e}")

    async def stop_all(self):
        for client_id in list(self.sessions):
            await self.remove_session(client_id)

    def active_sessions(self) -> List[str]:
        return list(self.sessions)


session_manager = SessionManager()


__all__ = ["PipelineEvent", "Session", "SessionManager", "SessionServices", "session_manager"]
