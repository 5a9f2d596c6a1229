"""
Per-session translation pipeline.

audio chunk -> recognition -> translation (fan-out per target language)
-> synthesis (fan-out) -> events

Adapters are injected at construction and only need these coroutines:

- transcriber: ``transcribe(chunk) -> RecognitionResult``
- translator: ``translate_multiple(text, source, targets, glossary_id) -> [TranslationResult]``
- synthesizer: ``synthesize_multiple([(text, language)]) -> [SynthesisResult]``
"""

import asyncio
from enum import Enum
from typing import Dict, Optional

from pydantic import ValidationError

from meet_translator.app.core.config import settings
from meet_translator.app.core.errors import (
    ConfigurationError,
    InvalidInputError,
    ServiceError,
)
from meet_translator.app.core.events import EventEmitter
from meet_translator.app.core.logger import logger
from meet_translator.app.core.metrics import LatencyTracker, MetricsAggregator
from meet_translator.app.schemas.pipeline import (
    AudioChunk,
    LatencyMetrics,
    SessionConfig,
    SessionState,
)


class PipelineEvent(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    PARTIAL_RECOGNITION = "partial-recognition"
    FINAL_RECOGNITION = "final-recognition"
    TRANSLATIONS = "translations"
    SYNTHESIZED_AUDIO = "synthesized-audio"
    SUBTITLES = "subtitles"
    ERROR = "error"


LIFECYCLE_EVENTS = (PipelineEvent.STARTED, PipelineEvent.STOPPED)


class SessionPipeline(EventEmitter):
    def __init__(
        self,
        transcriber,
        translator,
        synthesizer=None,
        latency_targets: Optional[Dict[str, float]] = None,
    ):
        super().__init__()
        self.transcriber = transcriber
        self.translator = translator
        self.synthesizer = synthesizer
        self.latency_targets = latency_targets or settings.LATENCY_TARGETS
        self.metrics = MetricsAggregator()

        self._config: Optional[SessionConfig] = None
        self._state = SessionState()
        # 同一会话的分片严格按顺序逐个处理
        self._lock = asyncio.Lock()

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    def get_state(self) -> SessionState:
        return self._state.model_copy()

    async def start(self, config):
        if isinstance(config, dict):
            try:
                config = SessionConfig.model_validate(config)
            except ValidationError as e:
                raise InvalidInputError(f"Invalid session config: {e}") from e
        if not isinstance(config, SessionConfig):
            raise InvalidInputError("Session config is required")
        if config.enable_voice and self.synthesizer is None:
            raise ConfigurationError("Voice output enabled but no synthesizer configured")

        if self._state.is_active:
            logger.warning("Pipeline already active, restarting with new config")

        logger.info(
            f"Starting audio pipeline: meeting={config.meeting_url} "
            f"targets={[lang.value for lang in config.target_languages]}"
        )
        self._config = config
        self._state = self._state.model_copy(update={"is_active": True})
        await self.emit(PipelineEvent.STARTED)

    async def stop(self) -> Dict[str, Dict[str, float]]:
        """停止会话并返回本次延迟统计 (均值/中位数)"""
        was_active = self._state.is_active
        logger.info("Stopping audio pipeline")
        self._state = self._state.model_copy(update={"is_active": False})

        stats = self.metrics.flush()
        logger.info(f"Performance Statistics: {stats}")

        if was_active:
            await self.emit(PipelineEvent.STOPPED, stats)
        return stats

    async def report_error(self, message: str):
        await self._emit(PipelineEvent.ERROR, message)

    async def _emit(self, event: PipelineEvent, payload):
        # 停止后不再发送进行中分片的结果
        if event not in LIFECYCLE_EVENTS and not self._state.is_active:
            logger.debug(f"Dropping '{event.value}' event, pipeline inactive")
            return
        await self.emit(event, payload)

    async def process_chunk(self, chunk: AudioChunk):
        if not self._state.is_active:
            return

        async with self._lock:
            if not self._state.is_active:
                return

            tracker = LatencyTracker()
            try:
                await self._process(chunk, tracker)
            except Exception as e:
                logger.error(f"Error processing audio chunk: {e}")
                await self._emit(PipelineEvent.ERROR, str(e))

    async def _process(self, chunk: AudioChunk, tracker: LatencyTracker):
        if not isinstance(chunk, AudioChunk):
            raise InvalidInputError("Audio chunk is malformed")
        config = self._config

        # 1. 语音识别
        tracker.checkpoint("recognition_start")
        recognition = await self.transcriber.transcribe(chunk)
        tracker.checkpoint("recognition_end")
        if not self._state.is_active:
            return

        speaker = recognition.speaker_id or chunk.speaker_id
        if speaker:
            self._state = self._state.model_copy(update={"current_speaker": speaker})

        if not recognition.is_final:
            # 中间结果不进入翻译
            await self._emit(PipelineEvent.PARTIAL_RECOGNITION, recognition)
            return

        await self._emit(PipelineEvent.FINAL_RECOGNITION, recognition)

        # 2. 翻译 (多语言并发)
        targets = [
            lang for lang in config.target_languages if lang != recognition.language
        ]
        tracker.checkpoint("translation_start")
        translations = await self.translator.translate_multiple(
            recognition.text, recognition.language, targets, config.glossary_id
        )
        tracker.checkpoint("translation_end")

        order = {lang: i for i, lang in enumerate(targets)}
        translations = sorted(
            (t for t in translations if t.target_lang in order),
            key=lambda t: order[t.target_lang],
        )
        if len(translations) != len(targets):
            raise ServiceError(
                f"Expected {len(targets)} translations, got {len(translations)}",
                provider="translation",
            )

        await self._emit(PipelineEvent.TRANSLATIONS, translations)

        # 3. 语音合成
        if config.enable_voice:
            tracker.checkpoint("synthesis_start")
            audio = await self.synthesizer.synthesize_multiple(
                [(t.translated_text, t.target_lang) for t in translations]
            )
            tracker.checkpoint("synthesis_end")
            await self._emit(PipelineEvent.SYNTHESIZED_AUDIO, audio)

        # 4. 字幕
        if config.enable_subtitles:
            await self._emit(PipelineEvent.SUBTITLES, translations)

        # stop() 已经 flush 过统计，停止后完成的分片不再计入
        if self._state.is_active:
            self._record_latency(tracker, config.enable_voice)

    def _record_latency(self, tracker: LatencyTracker, voice_enabled: bool):
        latency = LatencyMetrics(
            recognition=tracker.duration("recognition_start", "recognition_end"),
            translation=tracker.duration("translation_start", "translation_end"),
            synthesis=(
                tracker.duration("synthesis_start", "synthesis_end") if voice_enabled else 0
            ),
            total=tracker.total_duration(),
        )

        self.metrics.add_metric("recognition", latency.recognition)
        self.metrics.add_metric("translation", latency.translation)
        if voice_enabled:
            self.metrics.add_metric("synthesis", latency.synthesis)
        self.metrics.add_metric("total", latency.total)

        self._state = self._state.model_copy(update={"latency": latency})
        logger.debug(f"Processing completed: {latency.model_dump()}")

        target = self.latency_targets.get("total")
        if target and latency.total > target:
            logger.warning(
                f"Chunk latency {latency.total:.0f}ms exceeded target {target}ms"
            )
