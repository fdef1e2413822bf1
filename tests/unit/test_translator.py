import unittest

from dolphin.llm.errors import TransportError
from dolphin.nodes.translator import TranslationCache, TranslationCacheManager, TranslationKey
from tests.mocks.fake_genai import FakeGenerativeClient, text_response


SOLUTION = "**Step 2: Formula**\n$F = m \\cdot a$"


class TranslationCacheTestCase(unittest.TestCase):
    def test_rebinding_field_drops_its_entries_only(self) -> None:
        cache = TranslationCache()
        cache.bind("text", "one")
        cache.bind("verification", "two")
        cache.put("Hindi", "text", "एक")
        cache.put("Hindi", "verification", "दो")

        cache.bind("text", "one")
        self.assertEqual(cache.get("Hindi", "text"), "एक")

        cache.bind("text", "changed")
        self.assertIsNone(cache.get("Hindi", "text"))
        self.assertEqual(cache.get("Hindi", "verification"), "दो")
        self.assertIn(TranslationKey("Hindi", "verification"), cache)

    def test_entries_are_append_only(self) -> None:
        cache = TranslationCache()
        cache.put("Hindi", "text", "first")
        cache.put("Hindi", "text", "second")
        self.assertEqual(cache.get("Hindi", "text"), "first")
        self.assertEqual(len(cache), 1)


class TranslationCacheManagerTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_repeated_request_is_served_from_cache(self) -> None:
        client = FakeGenerativeClient(content=[text_response("**चरण 2: सूत्र**\n$F = m \\cdot a$")])
        manager = TranslationCacheManager(client)

        first = await manager.translate(SOLUTION, "Hindi", field_name="solution")
        second = await manager.translate(SOLUTION, "Hindi", field_name="solution")

        self.assertTrue(first.ok)
        self.assertEqual(first.get("solution"), second.get("solution"))
        self.assertTrue(second.cached)
        self.assertEqual(len(client.content_calls), 1)
        self.assertEqual(manager.language, "Hindi")

    async def test_prompt_preserves_math_rules(self) -> None:
        client = FakeGenerativeClient(content=[text_response("अनुवाद")])
        await TranslationCacheManager(client).translate(SOLUTION, "Hindi")
        call = client.content_calls[0]
        self.assertEqual(call["model"], "gemini-2.5-flash")
        self.assertIn("Translate the following technical/mathematical text to Hindi.", call["contents"])
        self.assertIn("Do NOT translate any content inside LaTeX delimiters", call["contents"])
        self.assertTrue(call["contents"].endswith(SOLUTION))

    async def test_source_language_needs_no_call(self) -> None:
        client = FakeGenerativeClient()
        outcome = await TranslationCacheManager(client).translate(SOLUTION, "English")
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.get("text"), SOLUTION)
        self.assertEqual(client.content_calls, [])

    async def test_fields_cache_independently(self) -> None:
        client = FakeGenerativeClient(content=[text_response("उत्तर"), text_response("सत्यापित"), text_response("नया उत्तर")])
        manager = TranslationCacheManager(client)

        await manager.translate_fields({"text": "Answer", "verification": "Verified"}, "Hindi")
        outcome = await manager.translate_fields({"text": "New answer", "verification": "Verified"}, "Hindi")

        self.assertEqual(outcome.texts, {"text": "नया उत्तर", "verification": "सत्यापित"})
        self.assertEqual(len(client.content_calls), 3)
        self.assertFalse(outcome.cached)

    async def test_partial_failure_reverts_and_commits_nothing(self) -> None:
        client = FakeGenerativeClient(
            content=[
                text_response("उत्तर"),
                TransportError("quota", status_code=429),
                text_response("उत्तर"),
                text_response("सत्यापित"),
            ]
        )
        manager = TranslationCacheManager(client)
        fields = {"text": "Answer", "verification": "Verified"}

        with self.assertLogs("dolphin.translator", level="WARNING"):
            failed = await manager.translate_fields(fields, "Hindi")
        self.assertFalse(failed.ok)
        self.assertEqual(failed.language, "English")
        self.assertEqual(failed.texts, fields)
        self.assertEqual(manager.language, "English")
        self.assertIsNone(manager.cache.get("Hindi", "text"))

        retried = await manager.translate_fields(fields, "Hindi")
        self.assertTrue(retried.ok)
        self.assertEqual(len(client.content_calls), 4)

    async def test_empty_translation_falls_back_to_original(self) -> None:
        client = FakeGenerativeClient(content=[text_response("")])
        outcome = await TranslationCacheManager(client).translate("Plain text", "Hindi")
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.get("text"), "Plain text")

    async def test_changed_source_is_translated_again(self) -> None:
        client = FakeGenerativeClient(content=[text_response("पहला"), text_response("दूसरा")])
        manager = TranslationCacheManager(client)
        await manager.translate("First solution", "Hindi", field_name="solution")
        outcome = await manager.translate("Second solution", "Hindi", field_name="solution")
        self.assertEqual(outcome.get("solution"), "दूसरा")
        self.assertEqual(len(client.content_calls), 2)


if __name__ == "__main__":
    unittest.main()
