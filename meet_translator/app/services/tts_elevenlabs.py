import asyncio
import time
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from meet_translator.app.core.config import settings
from meet_translator.app.core.errors import (
    ConfigurationError,
    ServiceError,
    UnsupportedLanguageError,
)
from meet_translator.app.core.logger import logger
from meet_translator.app.schemas.pipeline import (
    SupportedLanguage,
    SynthesisResult,
    VoiceProfile,
)

# 默认音色
DEFAULT_VOICES = {
    SupportedLanguage.JA: VoiceProfile(voice_id="EXAVITQu4vr4xnSDxMaL"),
    SupportedLanguage.ZH_HANT_TW: VoiceProfile(voice_id="pNInz6obpgDQGcFmaJgB"),
    SupportedLanguage.FR: VoiceProfile(voice_id="ThT5KcBeYPX3keUQqHPh"),
}


class ElevenLabsTTS:
    """ElevenLabs 语音合成，每种语言对应一个音色配置"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model_id: Optional[str] = None,
        timeout: Optional[float] = None,
        voices: Optional[Dict[SupportedLanguage, VoiceProfile]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = settings.ELEVENLABS_API_KEY if api_key is None else api_key
        self.api_base = (api_base or settings.ELEVENLABS_API_BASE).rstrip("/")
        self.model_id = model_id or settings.ELEVENLABS_TTS_MODEL
        self.voice_settings: Dict[SupportedLanguage, VoiceProfile] = dict(
            DEFAULT_VOICES if voices is None else voices
        )
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.TTS_TIMEOUT)

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY is not set", provider="elevenlabs")
        return {"xi-api-key": self.api_key, "Accept": accept}

    async def synthesize(
        self, text: str, language: SupportedLanguage, model_id: Optional[str] = None
    ) -> SynthesisResult:
        voice = self.voice_settings.get(language)
        if voice is None:
            raise UnsupportedLanguageError(language, provider="elevenlabs")

        headers = self._headers(accept="audio/mpeg")
        start_time = time.perf_counter()
        payload = {
            "text": text,
            "model_id": model_id or self.model_id,
            "voice_settings": {
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
            },
        }

        try:
            response = await self.client.post(
                f"{self.api_base}/text-to-speech/{voice.voice_id}/stream",
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"TTS synthesis failed [{language.value}] '{text[:50]}': "
                f"{e.response.status_code}"
            )
            raise ServiceError(
                f"TTS API error: {e.response.status_code}",
                provider="elevenlabs",
                status_code=e.response.status_code,
                language=language.value,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"TTS synthesis failed [{language.value}] '{text[:50]}': {e}")
            raise ServiceError(
                f"TTS request failed: {e}", provider="elevenlabs", language=language.value
            ) from e

        audio_data = response.content
        latency = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"TTS synthesis completed [{language.value}] in {latency:.0f}ms "
            f"(text={len(text)}, audio={len(audio_data)} bytes)"
        )
        return SynthesisResult(audio_data=audio_data, language=language)

    async def synthesize_multiple(
        self, items: Iterable[Tuple[str, SupportedLanguage]]
    ) -> List[SynthesisResult]:
        """并发合成 (text, language) 列表，结果顺序与输入一致"""
        return list(
            await asyncio.gather(
                *[self.synthesize(text, language) for text, language in items]
            )
        )

    def set_voice_settings(
        self,
        language: SupportedLanguage,
        voice_id: Optional[str] = None,
        stability: Optional[float] = None,
        similarity_boost: Optional[float] = None,
    ) -> VoiceProfile:
        """只覆盖传入的字段"""
        current = self.voice_settings.get(language)
        if current is None:
            raise UnsupportedLanguageError(language, provider="elevenlabs")

        updates = {
            "voice_id": voice_id,
            "stability": stability,
            "similarity_boost": similarity_boost,
        }
        merged = VoiceProfile(
            **{
                **current.model_dump(),
                **{k: v for k, v in updates.items() if v is not None},
            }
        )
        self.voice_settings[language] = merged
        logger.info(f"Voice settings updated [{language.value}]: {merged.model_dump()}")
        return merged

    async def get_available_voices(self) -> list:
        try:
            response = await self.client.get(
                f"{self.api_base}/voices", headers=self._headers()
            )
            response.raise_for_status()
            return response.json().get("voices", [])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get available voices: {e}")
            raise ServiceError(
                f"Failed to get available voices: {e}", provider="elevenlabs"
            ) from e

    async def health_check(self) -> bool:
        try:
            await self.get_available_voices()
            return True
        except Exception as e:
            logger.error(f"TTS service health check failed: {e}")
            return False

    async def close(self):
        await self.client.aclose()
