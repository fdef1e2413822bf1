import unittest

from dolphin.agents.state import WebSource
from dolphin.llm.errors import AuthorizationError, TransportError
from dolphin.nodes.search import (
    NO_RESULTS_TEXT,
    VERIFICATION_FALLBACK,
    SearchAndVerifyPipeline,
    dedupe_sources,
    extract_web_sources,
)
from tests.mocks.fake_genai import FakeGenerativeClient, text_response


class SourceExtractionTestCase(unittest.TestCase):
    def test_dedupe_keeps_first_occurrence_in_order(self) -> None:
        sources = [WebSource(uri="A", title="t1"), WebSource(uri="B", title="t2"), WebSource(uri="A", title="t3")]
        self.assertEqual(
            dedupe_sources(sources),
            [WebSource(uri="A", title="t1"), WebSource(uri="B", title="t2")],
        )

    def test_chunks_without_uri_or_title_are_dropped(self) -> None:
        response = text_response("answer", sources=[("https://a", "A"), ("", "no uri"), ("https://b", ""), ("https://c", "C")])
        self.assertEqual([source.uri for source in extract_web_sources(response)], ["https://a", "https://c"])

    def test_missing_grounding_metadata(self) -> None:
        self.assertEqual(extract_web_sources(text_response("answer")), [])
        self.assertEqual(extract_web_sources(object()), [])


class SearchAndVerifyTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_search_then_verify(self) -> None:
        client = FakeGenerativeClient(
            content=[
                text_response("Speed of light is 299,792 km/s.", sources=[("https://a", "A"), ("https://a", "A again")]),
                text_response("Accurate and complete."),
            ]
        )
        result = await SearchAndVerifyPipeline(client).search("  speed of light  ")

        self.assertEqual(result.text, "Speed of light is 299,792 km/s.")
        self.assertEqual(result.web_sources, [WebSource(uri="https://a", title="A")])
        self.assertEqual(result.verification, "Accurate and complete.")

        search_call, verify_call = client.content_calls
        self.assertEqual(search_call["model"], "gemini-2.5-flash")
        self.assertEqual(search_call["contents"], "speed of light")
        self.assertIsNotNone(search_call["config"].tools[0].google_search)
        self.assertEqual(verify_call["model"], "gemini-3-pro-preview")
        self.assertIn('I searched for: "speed of light"', verify_call["contents"])
        self.assertIn("Speed of light is 299,792 km/s.", verify_call["contents"])

    async def test_verification_failure_uses_fallback(self) -> None:
        client = FakeGenerativeClient(
            content=[
                text_response("Answer", sources=[("https://a", "A")]),
                TransportError("verifier down", status_code=503),
            ]
        )
        with self.assertLogs("dolphin.search", level="WARNING"):
            result = await SearchAndVerifyPipeline(client).search("query")

        self.assertEqual(result.text, "Answer")
        self.assertEqual(len(result.web_sources), 1)
        self.assertEqual(result.verification, VERIFICATION_FALLBACK)

    async def test_empty_answer_becomes_placeholder(self) -> None:
        client = FakeGenerativeClient(content=[text_response(""), text_response("")])
        result = await SearchAndVerifyPipeline(client).search("obscure")
        self.assertEqual(result.text, NO_RESULTS_TEXT)
        self.assertIsNone(result.verification)

    async def test_search_failure_propagates(self) -> None:
        client = FakeGenerativeClient(content=[AuthorizationError("denied", reason="forbidden", status_code=403)])
        with self.assertRaises(AuthorizationError):
            await SearchAndVerifyPipeline(client).search("query")
        self.assertEqual(len(client.content_calls), 1)

    async def test_blank_query_rejected_without_call(self) -> None:
        client = FakeGenerativeClient()
        with self.assertRaises(ValueError):
            await SearchAndVerifyPipeline(client).search("   ")
        self.assertEqual(client.content_calls, [])

    async def test_search_template_from_prompt_pack(self) -> None:
        client = FakeGenerativeClient(content=[text_response("x"), text_response("ok")])
        pipeline = SearchAndVerifyPipeline(client, search_prompt_pack={"user": "Find: {{query}}"})
        await pipeline.search("entropy")
        self.assertEqual(client.content_calls[0]["contents"], "Find: entropy")


if __name__ == "__main__":
    unittest.main()
