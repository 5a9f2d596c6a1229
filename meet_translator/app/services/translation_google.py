import asyncio
import time
from typing import Iterable, List, Optional

import httpx

from meet_translator.app.core.config import settings
from meet_translator.app.core.errors import ConfigurationError, ServiceError
from meet_translator.app.core.logger import logger
from meet_translator.app.schemas.pipeline import SupportedLanguage, TranslationResult

# Google Cloud Translation 使用的语言代码
LANGUAGE_CODES = {
    SupportedLanguage.JA: "ja",
    SupportedLanguage.ZH_HANT_TW: "zh-TW",
    SupportedLanguage.FR: "fr",
}

# 接口不返回置信度，使用固定值
DEFAULT_CONFIDENCE = 0.9


class GoogleTranslation:
    """Google Cloud Translation v3 (REST)"""

    def __init__(
        self,
        project_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_base: Optional[str] = None,
        location: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.project_id = settings.GOOGLE_PROJECT_ID if project_id is None else project_id
        self.access_token = (
            settings.GOOGLE_ACCESS_TOKEN if access_token is None else access_token
        )
        self.api_base = (api_base or settings.GOOGLE_TRANSLATE_API_BASE).rstrip("/")
        self.location = location or settings.GOOGLE_LOCATION
        self.client = client or httpx.AsyncClient(
            timeout=timeout or settings.TRANSLATION_TIMEOUT
        )

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}/locations/{self.location}"

    def get_glossary_path(self, glossary_id: str) -> str:
        return f"{self.parent}/glossaries/{glossary_id}"

    @staticmethod
    def map_language_code(language: SupportedLanguage) -> str:
        return LANGUAGE_CODES.get(language, getattr(language, "value", language))

    async def translate(
        self,
        text: str,
        source_lang: SupportedLanguage,
        target_lang: SupportedLanguage,
        glossary_id: Optional[str] = None,
    ) -> TranslationResult:
        if not self.project_id:
            raise ConfigurationError("GOOGLE_PROJECT_ID is not set", provider="google")

        start_time = time.perf_counter()
        request = {
            "contents": [text],
            "mimeType": "text/plain",
            "sourceLanguageCode": self.map_language_code(source_lang),
            "targetLanguageCode": self.map_language_code(target_lang),
        }
        if glossary_id:
            request["glossaryConfig"] = {"glossary": self.get_glossary_path(glossary_id)}

        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            response = await self.client.post(
                f"{self.api_base}/{self.parent}:translateText",
                json=request,
                headers=headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Translation failed {source_lang.value}->{target_lang.value}: "
                f"{e.response.status_code}"
            )
            raise ServiceError(
                f"Translation API error: {e.response.status_code}",
                provider="google",
                status_code=e.response.status_code,
                target_lang=target_lang.value,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                f"Translation failed {source_lang.value}->{target_lang.value}: {e}"
            )
            raise ServiceError(
                f"Translation request failed: {e}",
                provider="google",
                target_lang=target_lang.value,
            ) from e

        # 指定术语表时优先使用术语表翻译结果
        translations = data.get("glossaryTranslations") or data.get("translations") or []
        translated_text = translations[0].get("translatedText", "") if translations else ""

        latency = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Translation completed {source_lang.value}->{target_lang.value} "
            f"in {latency:.0f}ms (len={len(text)})"
        )

        return TranslationResult(
            original_text=text,
            translated_text=translated_text,
            source_lang=source_lang,
            target_lang=target_lang,
            confidence=DEFAULT_CONFIDENCE,
        )

    async def translate_multiple(
        self,
        text: str,
        source_lang: SupportedLanguage,
        target_langs: Iterable[SupportedLanguage],
        glossary_id: Optional[str] = None,
    ) -> List[TranslationResult]:
        """并发翻译到多个目标语言，跳过与源语言相同的目标；任一语言失败则整体失败"""
        return list(
            await asyncio.gather(
                *[
                    self.translate(text, source_lang, target, glossary_id)
                    for target in target_langs
                    if target != source_lang
                ]
            )
        )

    async def health_check(self) -> bool:
        try:
            await self.translate("test", SupportedLanguage.JA, SupportedLanguage.FR)
            return True
        except Exception as e:
            logger.error(f"Translation service health check failed: {e}")
            return False

    async def close(self):
        await self.client.aclose()
