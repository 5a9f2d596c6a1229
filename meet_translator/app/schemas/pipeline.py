import base64
import time
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def now_ms() -> int:
    return int(time.time() * 1000)


class SupportedLanguage(str, Enum):
    JA = "ja"
    ZH_HANT_TW = "zh-Hant-TW"
    FR = "fr"


class AudioChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    timestamp: int = Field(default_factory=now_ms, ge=0)
    speaker_id: Optional[str] = None

    @field_validator("data")
    @classmethod
    def _not_empty(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("empty audio chunk")
        return v


class RecognitionResult(BaseModel):
    text: str
    language: SupportedLanguage
    is_final: bool
    confidence: float = Field(ge=0, le=1)
    timestamp: int = Field(default_factory=now_ms)
    speaker_id: Optional[str] = None


class TranslationResult(BaseModel):
    original_text: str
    translated_text: str
    source_lang: SupportedLanguage
    target_lang: SupportedLanguage
    confidence: float = Field(ge=0, le=1)
    timestamp: int = Field(default_factory=now_ms)
    is_interim: Optional[bool] = None  # 逐句翻译的中间结果


class SynthesisResult(BaseModel):
    audio_data: bytes
    language: SupportedLanguage
    timestamp: int = Field(default_factory=now_ms)

    @field_serializer("audio_data", when_used="json")
    def _audio_b64(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")


class VoiceProfile(BaseModel):
    voice_id: str
    stability: float = Field(0.5, ge=0, le=1)
    similarity_boost: float = Field(0.75, ge=0, le=1)


class VoiceProfileUpdate(BaseModel):
    """会话级的音色覆盖，只合并提供的字段"""

    model_config = ConfigDict(frozen=True)

    voice_id: Optional[str] = None
    stability: Optional[float] = Field(None, ge=0, le=1)
    similarity_boost: Optional[float] = Field(None, ge=0, le=1)


class SessionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    meeting_url: str
    target_languages: Tuple[SupportedLanguage, ...]
    enable_voice: bool = True
    enable_subtitles: bool = True
    voice_settings: Optional[Dict[SupportedLanguage, VoiceProfileUpdate]] = None
    glossary_id: Optional[str] = None

    @field_validator("meeting_url")
    @classmethod
    def _meeting_url_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("meeting_url is required")
        return v.strip()

    @field_validator("target_languages")
    @classmethod
    def _dedupe_languages(cls, v):
        if not v:
            raise ValueError("at least one target language is required")
        # 去重并保持配置顺序
        return tuple(dict.fromkeys(v))


class LatencyMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    recognition: float = 0
    translation: float = 0
    synthesis: float = 0
    total: float = 0


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_active: bool = False
    current_speaker: Optional[str] = None
    latency: LatencyMetrics = Field(default_factory=LatencyMetrics)
