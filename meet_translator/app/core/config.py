import os

from meet_translator.app.core.errors import ConfigurationError


class Settings:
    BASE_DIR = os.path.dirname(
        os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    )

    # 服务设置
    PORT = int(os.getenv("PORT", "3001"))
    APP_ENV = os.getenv("APP_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    VERSION = "1.0.0"

    # ElevenLabs (语音识别 + 语音合成)
    ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
    ELEVENLABS_STT_WS_URL = os.getenv(
        "ELEVENLABS_STT_WS_URL", "wss://api.elevenlabs.io/v1/scribe/realtime"
    )
    ELEVENLABS_API_BASE = os.getenv(
        "ELEVENLABS_API_BASE", "https://api.elevenlabs.io/v1"
    )
    ELEVENLABS_TTS_MODEL = os.getenv("ELEVENLABS_TTS_MODEL", "eleven_flash_v2_5")

    # Google Cloud Translation (从环境变量读取，避免泄露)
    GOOGLE_PROJECT_ID = os.getenv("GOOGLE_PROJECT_ID", "")
    GOOGLE_ACCESS_TOKEN = os.getenv("GOOGLE_ACCESS_TOKEN", "")
    GOOGLE_TRANSLATE_API_BASE = os.getenv(
        "GOOGLE_TRANSLATE_API_BASE", "https://translation.googleapis.com/v3"
    )
    GOOGLE_LOCATION = os.getenv("GOOGLE_LOCATION", "global")

    # STT 断线重连：delay = min(base * 2^attempt, max)
    STT_RECONNECT_BASE_DELAY_MS = int(os.getenv("STT_RECONNECT_BASE_DELAY_MS", "1000"))
    STT_RECONNECT_MAX_DELAY_MS = int(os.getenv("STT_RECONNECT_MAX_DELAY_MS", "30000"))
    STT_MAX_RECONNECT_ATTEMPTS = int(os.getenv("STT_MAX_RECONNECT_ATTEMPTS", "5"))

    # 识别结果中无法映射的语言代码回落到该语言
    STT_FALLBACK_LANGUAGE = os.getenv("STT_FALLBACK_LANGUAGE", "ja")

    # Timeouts (seconds)
    STT_TIMEOUT = float(os.getenv("STT_TIMEOUT", "15"))
    TRANSLATION_TIMEOUT = float(os.getenv("TRANSLATION_TIMEOUT", "10"))
    TTS_TIMEOUT = float(os.getenv("TTS_TIMEOUT", "8"))

    # 延迟目标值 (ms)，超出时打印警告
    LATENCY_TARGETS = {
        "recognition": 150,
        "translation": 300,
        "synthesis": 250,
        "total": 700,
    }

    # WebSocket 空闲时发送 ping 的间隔 (秒)
    WS_IDLE_PING_SECONDS = float(os.getenv("WS_IDLE_PING_SECONDS", "5"))

    REQUIRED_VARS = ["ELEVENLABS_API_KEY", "GOOGLE_PROJECT_ID"]


settings = Settings()


def validate_config():
    """检查必需的环境变量，缺失时抛出 ConfigurationError"""
    missing = [name for name in Settings.REQUIRED_VARS if not os.getenv(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            missing=missing,
        )
