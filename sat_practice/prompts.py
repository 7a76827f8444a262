"""Prompt templates for question generation and etymology lookups."""
from __future__ import annotations

QUESTION_SYSTEM_ROLE = (
    "You are an expert Digital SAT item writer. You write original, accurate "
    "practice questions and always answer with raw JSON."
)

ETYMOLOGY_SYSTEM_ROLE = (
    "You are a helpful etymology expert. Break down words into their roots and "
    "provide accurate etymological information."
)

_OUTPUT_RULES = """\
Return a VALID JSON object in this EXACT format (no extra keys, no additional text, \
no markdown code fences, no commentary before or after the JSON):"""

READING_PROMPT = """\
Generate a DSAT-style Reading question at {difficulty} difficulty level.

Choose ONE of these question types randomly:
1. Specific Detail: Ask about locating and identifying specific information from the passage
2. Main Idea: Ask about the central theme or main point of the passage
3. Purpose: Ask about the author's primary purpose or intent
4. Function: Ask about the function of a specific phrase or section
5. Claims: Ask about evidence supporting or weakening claims in the passage
6. Data Interpretation: Include a small data point and ask how it relates to the passage
7. Complete The Text: Ask about logical completion of a thought or argument
8. Cross Text: Provide two short related passages and ask about their relationship
9. Structure: Ask about the organizational pattern or structure of the passage

Follow these steps:
1. Write a concise passage (80-120 words) appropriate for DSAT Reading.
   - For Cross Text questions, write two related short passages (50-60 words each)
   - For Data questions, include a simple data point or statistic
2. Formulate ONE question based on the randomly chosen question type above.
3. Provide four answer choices labeled A, B, C, D.
4. Indicate the correct answer.
5. Provide a detailed explanation that explains why the correct choice is correct, \
briefly addresses why each other choice is incorrect, and references the passage.

{output_rules}
{{
  "question": "Passage: ...\\nQuestion: ...",
  "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
  "correctAnswer": "A) ...",
  "explanation": "..."
}}
"""

WRITING_PROMPT = """\
Generate a DSAT-style Writing and Language question at {difficulty} difficulty level.

1. Provide a short sentence or brief passage (1-2 sentences) with a bracketed portion \
that needs editing or improvement. Focus on typical DSAT Writing topics: grammar, \
punctuation, word choice, style, sentence structure, or usage.
2. Formulate ONE question that asks how best to revise the bracketed portion, e.g. \
"Which choice completes the text so that it conforms to the conventions of Standard English?"
3. Provide four answer choices labeled A, B, C, D (including the original wording if it helps).
4. Indicate the correct answer.
5. Provide a detailed explanation of why the correct choice is best and why each \
other option is incorrect or less effective.

{output_rules}
{{
  "question": "Short text with [bracketed portion] + question",
  "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
  "correctAnswer": "A) ...",
  "explanation": "..."
}}
"""

MATH_PROMPT = """\
Generate a DSAT-style Math question at {difficulty} difficulty level.

1. Provide ONE math problem typical of the DSAT Math section (algebra, geometry, \
data analysis, or a word problem).
2. Give four answer choices labeled A, B, C, D.
3. Indicate the correct answer.
4. Offer a step-by-step explanation that solves the problem from start to finish, \
including any relevant formulas or reasoning steps.

{output_rules}
{{
  "question": "...",
  "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
  "correctAnswer": "A) ...",
  "explanation": "..."
}}
"""

VOCABULARY_PROMPT = """\
Generate a DSAT-style Words in Context question at {difficulty} difficulty level.

1. Write one or two sentences that use a single SAT-level vocabulary word, replaced \
by a blank ("______").
2. Ask: "Which choice completes the text with the most logical and precise word or phrase?"
3. Provide four single-word answer choices labeled A, B, C, D. Distractors should be \
real words of the same part of speech.
4. Indicate the correct answer.
5. Explain why the correct word fits the context and why the others do not.
6. Break the correct word down into its roots.

{output_rules}
{{
  "question": "...",
  "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
  "correctAnswer": "A) ...",
  "explanation": "...",
  "etymology": {{
    "word": "the correct word",
    "definition": "precise definition",
    "roots": [{{"root": "root part", "origin": "Latin/Greek/etc", "meaning": "meaning of this root"}}],
    "usage": "example sentence using the word"
  }}
}}
"""

ETYMOLOGY_PROMPT = """\
Analyze the etymology of the word "{word}" and return a JSON object with this exact structure:
{{
  "word": "{word}",
  "definition": "precise definition",
  "roots": [
    {{
      "root": "root part",
      "origin": "Latin/Greek/etc",
      "meaning": "meaning of this root"
    }}
  ],
  "usage": "example sentence using the word"
}}
Return only raw JSON without any markdown formatting or additional text.
"""

PROMPTS = {
    "reading": READING_PROMPT,
    "writing": WRITING_PROMPT,
    "math": MATH_PROMPT,
    "vocabulary": VOCABULARY_PROMPT,
}

DEFAULT_QUESTION_TYPE = "reading"


def build_question_prompt(question_type: str, difficulty: str = "medium") -> str:
    """Instruction string for one question of *question_type*.

    Unknown types fall back to the reading template.
    """
    template = PROMPTS.get(question_type, PROMPTS[DEFAULT_QUESTION_TYPE])
    return template.format(difficulty=difficulty, output_rules=_OUTPUT_RULES)


def build_etymology_prompt(word: str) -> str:
    return ETYMOLOGY_PROMPT.format(word=word.replace('"', "'"))
