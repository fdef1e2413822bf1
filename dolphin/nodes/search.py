"""Grounded web search followed by an independent verification pass."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from google.genai import types

from dolphin.agents.state import SearchResult, WebSource
from dolphin.utils.config_loader import render_prompt
from dolphin.utils.logger import get_logger


logger = get_logger("dolphin.search")

NO_RESULTS_TEXT = "No results found."
VERIFICATION_FALLBACK = "Could not verify result at this time."

DEFAULT_VERIFIER_PROMPT = """
I searched for: "{{query}}"

The search engine provided this answer:
"{{answer}}"

Please verify this information. Is it accurate, complete, and relevant?
Provide a concise verification summary (max 3 sentences).
"""


def extract_web_sources(response: Any) -> List[WebSource]:
    """Collects grounding citations from a search response.

    Only chunks carrying both a URI and a title are kept. Duplicated URIs keep
    their first occurrence and the original order.

    Args:
        response: SDK `GenerateContentResponse` (or a compatible object).

    Returns:
        Unique web sources in first-seen order.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    return dedupe_sources(_web_pairs(chunks))


def _web_pairs(chunks: Iterable[Any]) -> Iterable[WebSource]:
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = str(getattr(web, "uri", "") or "").strip()
        title = str(getattr(web, "title", "") or "").strip()
        if uri and title:
            yield WebSource(uri=uri, title=title)


def dedupe_sources(sources: Iterable[WebSource]) -> List[WebSource]:
    seen: Dict[str, WebSource] = {}
    for source in sources:
        if source.uri not in seen:
            seen[source.uri] = source
    return list(seen.values())


class SearchAndVerifyPipeline:
    """Two-stage search.

    Stage 1 asks a search-grounded model and fails the query when it fails.
    Stage 2 asks a stronger model to assess the answer; any failure there is
    logged and replaced by :data:`VERIFICATION_FALLBACK`.
    """

    def __init__(
        self,
        llm_client: Any,
        search_prompt_pack: Optional[Dict[str, str]] = None,
        verifier_prompt_pack: Optional[Dict[str, str]] = None,
        search_model: Optional[str] = None,
        verifier_model: Optional[str] = None,
    ) -> None:
        self.llm_client = llm_client
        self.search_prompt_pack = dict(search_prompt_pack or {})
        self.verifier_prompt_pack = dict(verifier_prompt_pack or {})
        self.search_model = search_model or llm_client.model_for("search")
        self.verifier_model = verifier_model or llm_client.model_for("verifier")

    async def search(self, query: str) -> SearchResult:
        """Runs grounded search and verification for `query`.

        Args:
            query: Free-text search query.

        Returns:
            Search answer, unique sources, and verification summary.

        Raises:
            ValueError: If `query` is blank.
        """
        clean_query = str(query or "").strip()
        if not clean_query:
            raise ValueError("query must not be blank")

        config = types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())],
            system_instruction=self.search_prompt_pack.get("system"),
        )
        search_template = self.search_prompt_pack.get("user")
        contents = render_prompt(search_template, {"query": clean_query}) if search_template else clean_query
        response = await self.llm_client.generate_content(model=self.search_model, contents=contents, config=config)

        answer = str(getattr(response, "text", None) or "") or NO_RESULTS_TEXT
        sources = extract_web_sources(response)
        logger.info("search_done model=%s sources=%d", self.search_model, len(sources))

        verification = await self.verify(clean_query, answer)
        return SearchResult(text=answer, web_sources=sources, verification=verification)

    async def verify(self, query: str, answer: str) -> Optional[str]:
        """Asks the verifier model for a short assessment of `answer`.

        Returns:
            Verification summary, None when the model returned no text, or the
            fallback notice when the call failed.
        """
        template = self.verifier_prompt_pack.get("user", DEFAULT_VERIFIER_PROMPT)
        prompt = render_prompt(template, {"query": query, "answer": answer}).strip()
        config = None
        if self.verifier_prompt_pack.get("system"):
            config = types.GenerateContentConfig(system_instruction=self.verifier_prompt_pack["system"])
        try:
            response = await self.llm_client.generate_content(model=self.verifier_model, contents=prompt, config=config)
        except Exception as exc:
            logger.warning("verification_failed model=%s error=%s", self.verifier_model, exc)
            return VERIFICATION_FALLBACK
        text = str(getattr(response, "text", None) or "").strip()
        return text or None
