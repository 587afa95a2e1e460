from typing import Dict, Optional

from core.chapter_craft import compute_request_budget, count_words, last_sentence, remaining_words, tail_text
from models import Language, PromptOptions, WritingMode

# Below this many remaining words the next request is asked to close the chapter.
CHAPTER_ENDING_THRESHOLD = 200

LANGUAGE_INSTRUCTIONS: Dict[Language, str] = {
    Language.INDONESIAN: "Write in Indonesian language (Bahasa Indonesia).",
    Language.ENGLISH: "Write in English language.",
}

MODE_INSTRUCTIONS: Dict[WritingMode, str] = {
    WritingMode.STORY: (
        "Advance the narrative with vivid scenes, character development and meaningful plot progress."
    ),
    WritingMode.DIALOGUE: (
        "Carry the scene mainly through natural dialogue that reveals character and pushes the conflict forward. "
        "Keep narration between lines short."
    ),
    WritingMode.DESCRIPTION: (
        "Focus on rich sensory description of the setting, the atmosphere and the physical action."
    ),
    WritingMode.CHARACTER: (
        "Deepen the characters: their inner thoughts, motivations, relationships and the choices they make."
    ),
    WritingMode.PLOT: (
        "Drive the plot: introduce complications, decisions with consequences and a clear turning point."
    ),
}


def language_instruction(language: Language) -> str:
    return LANGUAGE_INSTRUCTIONS.get(Language(language), LANGUAGE_INSTRUCTIONS[Language.ENGLISH])


def mode_instruction(mode: WritingMode) -> str:
    return MODE_INSTRUCTIONS[WritingMode(mode)]


def _opening_prompt(options: PromptOptions) -> str:
    return f"""You are an expert {options.genre} novelist. Write the BEGINNING of Chapter {options.chapter_number}. Create an engaging opening with vivid descriptions, character development, and plot advancement.

FOCUS: {mode_instruction(options.mode)}

IMPORTANT: Write AT LEAST 500-800 words for this opening section. Be detailed and descriptive. The goal is to generate substantial content with each request.

WORD COUNT REQUIREMENT: Your response must be at least 500 words minimum."""


def _ending_prompt(options: PromptOptions, words_so_far: int, left: int, section: str) -> str:
    return f"""You are writing a {options.genre} novel.

CURRENT CHAPTER PROGRESS: {words_so_far}/{options.target_words} words

LAST PART OF THE STORY:
"{section}"

TASK: Write the FINAL section to complete this chapter. Continue naturally from where the story ended. Write approximately {left} words to reach the {options.target_words}-word chapter goal. End with a compelling cliffhanger or transition to the next chapter.

FOCUS: {mode_instruction(options.mode)}

IMPORTANT:
- Continue from the exact point where the story left off
- Do NOT repeat or rewrite any existing content
- Maintain the same writing style and tone
- Advance the plot meaningfully
- Write AT LEAST {left} words to complete the chapter

WORD COUNT REQUIREMENT: Your response must be at least {left} words to complete the chapter properly."""


def _continuation_prompt(options: PromptOptions, words_so_far: int, section: str, sentence: str) -> str:
    budget = compute_request_budget(words_so_far, options.target_words)
    low = budget["request_words"]
    high = low + 300
    return f"""SYSTEM: You are a novel continuation AI. Your ONLY job is to ADD NEW CONTENT to a {options.genre} novel.

CRITICAL MISSION: CONTINUE the story from the exact ending point. DO NOT REWRITE ANYTHING.

CURRENT PROGRESS: {words_so_far}/{options.target_words} words (generating AT LEAST {low} words this cycle)

STORY ENDING POINT:
"{section}"

EXACT LAST SENTENCE: "{sentence}"

TASK: Write the NEXT {low}-{high} words that happen AFTER this sentence: "{sentence}"

FOCUS: {mode_instruction(options.mode)}

ABSOLUTE RULES:
- DO NOT repeat "{sentence}"
- DO NOT rewrite any existing content
- DO NOT start with "Chapter" or "Bab"
- DO NOT summarize what happened
- DO NOT change character names
- START with what happens NEXT
- Continue the same scene/action
- Move the story FORWARD

WORD COUNT REQUIREMENT: Your response must be at least {low} words minimum.

BEGIN CONTINUATION NOW:"""


def build_generation_prompt(text: str, options: PromptOptions, word_count: Optional[int] = None) -> str:
    """Instruction sent as the sole payload of a generation call.

    Deterministic for the same inputs. Length requests inside the prompt are
    advisory; nothing checks that the model complied.
    """
    content = text or ""
    if not content.strip():
        body = _opening_prompt(options)
    else:
        words_so_far = count_words(content) if word_count is None else word_count
        left = remaining_words(words_so_far, options.target_words)
        section = tail_text(content, options.context_chars)
        if left <= CHAPTER_ENDING_THRESHOLD:
            body = _ending_prompt(options, words_so_far, left, section)
        else:
            body = _continuation_prompt(options, words_so_far, section, last_sentence(content))
    return f"{language_instruction(options.language)}\n\n{body}"


def build_critique_prompt(text: str, options: PromptOptions) -> str:
    section = tail_text(text or "", options.context_chars)
    return f"""{language_instruction(options.language)}

You are a demanding but constructive fiction editor reviewing a {options.genre} novel in progress.

PASSAGE:
"{section}"

TASK: Critique this passage. Do NOT rewrite it and do NOT continue the story.
Cover, in short paragraphs:
1. Pacing and scene structure
2. Characterization and dialogue
3. Prose style, clarity and repetition
4. The single most important revision to make next"""
