import unittest

from core.prompt_builder import (
    MODE_INSTRUCTIONS,
    build_critique_prompt,
    build_generation_prompt,
)
from models import Language, PromptOptions, WritingMode


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n)) + "."


class PromptBuilderTest(unittest.TestCase):
    def test_empty_document_gets_opening_prompt(self):
        prompt = build_generation_prompt("", PromptOptions(genre="fantasy", chapter_number=3))
        self.assertIn("You are an expert fantasy novelist.", prompt)
        self.assertIn("BEGINNING of Chapter 3", prompt)

    def test_language_instruction_is_prepended(self):
        indo = build_generation_prompt("", PromptOptions(language=Language.INDONESIAN))
        eng = build_generation_prompt("", PromptOptions(language=Language.ENGLISH))
        self.assertTrue(indo.startswith("Write in Indonesian language (Bahasa Indonesia)."))
        self.assertTrue(eng.startswith("Write in English language."))

    def test_every_mode_selects_its_template(self):
        for mode in WritingMode:
            with self.subTest(mode=mode):
                prompt = build_generation_prompt("Story so far.", PromptOptions(mode=mode))
                self.assertIn(MODE_INSTRUCTIONS[mode], prompt)
                for other, instruction in MODE_INSTRUCTIONS.items():
                    if other != mode:
                        self.assertNotIn(instruction, prompt)

    def test_continuation_quotes_tail_and_last_sentence(self):
        text = "x" * 50 + " The storm broke. Mira ran toward the tower"
        prompt = build_generation_prompt(text, PromptOptions(context_chars=30))
        self.assertIn('"' + text[-30:] + '"', prompt)
        self.assertIn('EXACT LAST SENTENCE: "Mira ran toward the tower"', prompt)
        self.assertIn("CURRENT PROGRESS: 9/2000 words", prompt)
        self.assertNotIn("FINAL section", prompt)

    def test_near_target_switches_to_chapter_ending(self):
        text = _words(1850)
        prompt = build_generation_prompt(text, PromptOptions(target_words=2000))
        self.assertIn("FINAL section", prompt)
        self.assertIn("approximately 150 words", prompt)
        self.assertIn("CURRENT CHAPTER PROGRESS: 1850/2000 words", prompt)

    def test_word_count_override_is_used(self):
        prompt = build_generation_prompt("Short text.", PromptOptions(target_words=2000), word_count=1900)
        self.assertIn("FINAL section", prompt)

    def test_prompt_is_deterministic(self):
        options = PromptOptions(mode=WritingMode.PLOT, genre="mystery", language=Language.ENGLISH)
        text = _words(400)
        self.assertEqual(build_generation_prompt(text, options), build_generation_prompt(text, options))

    def test_critique_prompt(self):
        prompt = build_critique_prompt("The gate creaked open.", PromptOptions(language=Language.ENGLISH))
        self.assertTrue(prompt.startswith("Write in English language."))
        self.assertIn('"The gate creaked open."', prompt)
        self.assertIn("Do NOT rewrite it", prompt)


if __name__ == "__main__":
    unittest.main()
