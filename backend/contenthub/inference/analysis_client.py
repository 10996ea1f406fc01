import json
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import settings
from ..exceptions import UpstreamServiceError
from ..localization.prompts import image_analysis_prompt, page_analysis_prompt, page_translation_prompt
from ..logger import logger
from ..schemas import Correction, ImageQualityAnalysis, PageQualityAnalysis
from .json_guard import parse_json_object

SERVICE = "analysis"

# Analyzer context window; longer pages are judged on their opening.
MAX_ANALYSIS_CHARS = 8000


class AnalysisClient:
    """
    Chat-completions client (OpenAI-compatible) returning JSON verdicts.

    Used for image quality analysis, page quality analysis and page
    translation. Every reply is parsed into a pydantic model; a reply that
    does not fit is an upstream failure.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 120.0,
    ):
        self.base_url = (base_url or settings.ANALYSIS_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ANALYSIS_API_KEY
        self.model = model or settings.ANALYSIS_MODEL
        self._transport = transport
        self._timeout = timeout

    async def _complete_json(self, messages: List[Dict[str, Any]], max_tokens: int, temperature: float = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "max_completion_tokens": max_tokens,
        }
        if temperature is not None:
            body["temperature"] = temperature

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
                timeout=self._timeout,
            ) as client:
                resp = await client.post("/chat/completions", json=body)
        except httpx.HTTPError as e:
            logger.error(f"Analysis request failed: {e}")
            raise UpstreamServiceError(f"Analysis request failed: {e}", SERVICE)

        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Analysis API error ({resp.status_code}): {resp.text}", SERVICE)

        data = resp.json()
        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        if not content:
            raise UpstreamServiceError("No response from analysis service", SERVICE)

        usage = data.get("usage") or {}
        logger.info(
            "Analysis completion received",
            extra={
                "model": self.model,
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            },
        )
        try:
            return parse_json_object(content)
        except (json.JSONDecodeError, ValueError):
            raise UpstreamServiceError("Analysis service returned invalid JSON", SERVICE)

    async def analyze_image(self, original_url: str, translated_url: str, language: str) -> ImageQualityAnalysis:
        raw = await self._complete_json(
            [
                {"role": "system", "content": image_analysis_prompt(language)},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Image 1: English original. Image 2: translation. Evaluate quality."},
                        {"type": "image_url", "image_url": {"url": original_url, "detail": "high"}},
                        {"type": "image_url", "image_url": {"url": translated_url, "detail": "high"}},
                    ],
                },
            ],
            max_tokens=800,
        )
        raw.setdefault("quality_score", 0)
        try:
            return ImageQualityAnalysis.model_validate(raw)
        except ValidationError as e:
            raise UpstreamServiceError(f"Unexpected image analysis shape: {e}", SERVICE)

    async def analyze_page(
        self,
        original_text: str,
        translated_text: str,
        language: str,
        prior_corrections: Optional[List[Correction]] = None,
        previous_issues: Optional[List[str]] = None,
        previous_score: Optional[int] = None,
    ) -> PageQualityAnalysis:
        system = page_analysis_prompt(
            language,
            applied_corrections=[(c.find, c.replace) for c in prior_corrections or []],
            previous_issues=previous_issues,
            previous_score=previous_score,
        )
        raw = await self._complete_json(
            [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": (
                        f"Original (English):\n{original_text[:MAX_ANALYSIS_CHARS]}\n\n---\n\n"
                        f"Translation:\n{translated_text[:MAX_ANALYSIS_CHARS]}"
                    ),
                },
            ],
            max_tokens=4000,
        )
        raw.setdefault("quality_score", 0)
        # Corrections without a usable find string are dropped here rather than failing the reply.
        raw["suggested_corrections"] = [
            c for c in raw.get("suggested_corrections") or []
            if isinstance(c, dict) and isinstance(c.get("find"), str) and c.get("find")
        ]
        try:
            return PageQualityAnalysis.model_validate(raw)
        except ValidationError as e:
            raise UpstreamServiceError(f"Unexpected page analysis shape: {e}", SERVICE)

    async def translate_html(self, html: str, language: str) -> Dict[str, Optional[str]]:
        raw = await self._complete_json(
            [
                {"role": "system", "content": page_translation_prompt(language)},
                {"role": "user", "content": html},
            ],
            max_tokens=16000,
            temperature=0.3,
        )
        translated = raw.get("translated_html")
        if not isinstance(translated, str) or not translated.strip():
            raise UpstreamServiceError("Translator returned no translated_html", SERVICE)
        return {
            "translated_html": translated,
            "seo_title": raw.get("seo_title"),
            "seo_description": raw.get("seo_description"),
        }
