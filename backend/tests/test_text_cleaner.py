import unittest

from utils.text_cleaner import strip_filler


class StripFillerTest(unittest.TestCase):
    def test_plain_prose_is_untouched(self):
        text = "The gate creaked open.\n\nMira stepped into the dark."
        self.assertEqual(strip_filler(text), text)

    def test_strips_assistant_preamble(self):
        text = "Sure! Here is the continuation of the story:\n\nThe gate creaked open."
        self.assertEqual(strip_filler(text), "The gate creaked open.")

    def test_strips_here_is_line_ending_with_colon(self):
        text = "Here's the next part of Chapter 2:\nThe gate creaked open."
        self.assertEqual(strip_filler(text), "The gate creaked open.")

    def test_keeps_prose_that_starts_like_filler(self):
        text = "Sure enough, the gate creaked open.\nHere is where the road ended."
        self.assertEqual(strip_filler(text), text)

    def test_strips_chapter_heading(self):
        self.assertEqual(strip_filler("Chapter 3: The Fall\n\nRain hammered the roof."), "Rain hammered the roof.")
        self.assertEqual(strip_filler("## Bab 2\nHujan turun deras."), "Hujan turun deras.")

    def test_strips_trailing_word_count_and_offer(self):
        text = (
            "Rain hammered the roof.\n\n"
            "(Word count: 612)\n"
            "Let me know if you'd like me to continue!"
        )
        self.assertEqual(strip_filler(text), "Rain hammered the roof.")

    def test_strips_to_be_continued_and_rules(self):
        self.assertEqual(strip_filler("Rain fell.\n---\nTo be continued..."), "Rain fell.")

    def test_unwraps_fully_quoted_response(self):
        self.assertEqual(strip_filler('"Rain fell on the city."'), "Rain fell on the city.")

    def test_keeps_inner_dialogue_quotes(self):
        text = '"Run," she said. "Now."'
        self.assertEqual(strip_filler(text), text)

    def test_only_filler_becomes_empty(self):
        self.assertEqual(strip_filler("Sure!\n\nI hope you enjoy it."), "")
        self.assertEqual(strip_filler(""), "")


if __name__ == "__main__":
    unittest.main()
