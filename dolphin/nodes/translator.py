"""On-demand translation of markdown+math text with a per-(language, field) cache."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, NamedTuple, Optional

from google.genai import types

from dolphin.utils.config_loader import render_prompt
from dolphin.utils.logger import get_logger


logger = get_logger("dolphin.translator")

DEFAULT_TRANSLATOR_PROMPT = """
Translate the following technical/mathematical text to {{language}}.

IMPORTANT INSTRUCTIONS:
1. Do NOT translate any content inside LaTeX delimiters ($...$ or $$...$$). Math equations must remain exactly as they are.
2. Maintain the exact Markdown structure (headers, bolding, lists).
3. Translate the prose explanations naturally and accurately.
4. Do NOT add any preamble or explanation, just return the translated markdown.

Text to translate:
{{text}}
"""


class TranslationKey(NamedTuple):
    language: str
    field: str


class TranslationCache:
    """Append-only cache of translations keyed by `(language, field)`.

    Each field is bound to the source text it was translated from. Binding a
    different source drops the entries of that field, so translations of an
    older source are never returned.
    """

    def __init__(self) -> None:
        self._entries: Dict[TranslationKey, str] = {}
        self._sources: Dict[str, str] = {}

    def bind(self, field_name: str, source: str) -> None:
        if self._sources.get(field_name) == source:
            return
        if field_name in self._sources:
            stale = [key for key in self._entries if key.field == field_name]
            for key in stale:
                self._entries.pop(key, None)
        self._sources[field_name] = source

    def get(self, language: str, field_name: str) -> Optional[str]:
        return self._entries.get(TranslationKey(language, field_name))

    def put(self, language: str, field_name: str, text: str) -> None:
        self._entries.setdefault(TranslationKey(language, field_name), text)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class TranslationOutcome:
    """Result of a translation request.

    On failure `language` is the source language and `texts` holds the
    original texts, so callers can display them directly.
    """

    ok: bool
    language: str
    texts: Dict[str, str] = field(default_factory=dict)
    cached: bool = False
    error: Optional[str] = None

    def get(self, field_name: str, default: str = "") -> str:
        return self.texts.get(field_name, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "language": self.language,
            "texts": dict(self.texts),
            "cached": self.cached,
            "error": self.error,
        }


class TranslationCacheManager:
    """Translates one view's text fields and tracks its display language."""

    def __init__(
        self,
        llm_client: Any,
        source_language: str = "English",
        prompt_pack: Optional[Dict[str, str]] = None,
        model: Optional[str] = None,
    ) -> None:
        self.llm_client = llm_client
        self.source_language = source_language
        self.prompt_pack = dict(prompt_pack or {})
        self.model = model or llm_client.model_for("translator")
        self.cache = TranslationCache()
        self.language = source_language
        self._lock = asyncio.Lock()

    async def translate(self, text: str, language: str, field_name: str = "text") -> TranslationOutcome:
        return await self.translate_fields({field_name: text}, language)

    async def translate_fields(self, fields: Mapping[str, str], language: str) -> TranslationOutcome:
        """Translates every non-empty field of `fields` into `language`.

        Cached fields are reused; the rest are translated in order and cached
        only when all of them succeed.

        Args:
            fields: Field name to source text.
            language: Target language label.

        Returns:
            Translation outcome; failures revert to the source language.
        """
        originals = {name: str(text or "") for name, text in fields.items()}
        async with self._lock:
            for name, text in originals.items():
                self.cache.bind(name, text)

            if language == self.source_language:
                self.language = language
                return TranslationOutcome(ok=True, language=language, texts=dict(originals), cached=True)

            translated: Dict[str, str] = {}
            pending: Dict[str, str] = {}
            for name, text in originals.items():
                hit = self.cache.get(language, name)
                if not text:
                    translated[name] = text
                elif hit is not None:
                    translated[name] = hit
                else:
                    pending[name] = text

            try:
                for name, text in pending.items():
                    translated[name] = await self._translate_one(text, language)
            except Exception as exc:
                logger.warning("translation_failed language=%s fields=%s error=%s", language, sorted(pending), exc)
                self.language = self.source_language
                return TranslationOutcome(
                    ok=False,
                    language=self.source_language,
                    texts=dict(originals),
                    error=str(exc),
                )

            for name in pending:
                self.cache.put(language, name, translated[name])
            self.language = language
            return TranslationOutcome(ok=True, language=language, texts=translated, cached=not pending)

    async def _translate_one(self, text: str, language: str) -> str:
        template = self.prompt_pack.get("user", DEFAULT_TRANSLATOR_PROMPT)
        prompt = render_prompt(template, {"language": language, "text": text}).strip()
        config = None
        if self.prompt_pack.get("system"):
            config = types.GenerateContentConfig(system_instruction=self.prompt_pack["system"])
        response = await self.llm_client.generate_content(model=self.model, contents=prompt, config=config)
        return str(getattr(response, "text", None) or "") or text
