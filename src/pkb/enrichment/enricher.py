"""Claude API enrichment for documents: summaries and key points."""

import json
import logging
import re
from typing import Any

from ..ingest.chunker import chunk_text
from ..llm import CompletionService
from .prompts import (
    KEY_POINTS_SYSTEM,
    SUMMARY_COMBINE_PROMPT,
    SUMMARY_COMBINE_SYSTEM,
    SUMMARY_PART_SYSTEM,
    SUMMARY_SYSTEM,
)

logger = logging.getLogger(__name__)

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
IMPORTANCE_WORDS = re.compile(
    r"important|significant|key|critical|essential|main|primary|crucial|vital|fundamental", re.IGNORECASE
)
KEY_POINT_WORDS = re.compile(
    r"important|significant|key|critical|essential|main|primary|crucial|vital|fundamental"
    r"|note that|remember|consider",
    re.IGNORECASE,
)
BULLET = re.compile(r"^(?:[-•*]|\d+\.)\s*")
MAX_KEY_POINTS = 5


class Enricher:
    """Generates document summaries and key points.

    Every model call falls back to an extractive heuristic when the completion
    collaborator is missing or fails, so enrichment never aborts indexing.
    """

    def __init__(
        self,
        completion: CompletionService | None,
        *,
        slice_chars: int = 10000,
        max_tokens: int = 500,
    ):
        self.completion = completion
        self.slice_chars = slice_chars
        self.max_tokens = max_tokens

    def summarize(self, content: str) -> str:
        if self.completion is None:
            return extractive_summary(content)

        if len(content) <= self.slice_chars:
            try:
                return self._complete(content, SUMMARY_SYSTEM)
            except Exception as e:
                logger.warning("Summary generation failed, using extractive summary: %s", e)
                return extractive_summary(content)

        # Long documents are summarized per slice, then combined
        summaries = []
        for part in chunk_text(content, self.slice_chars, 0):
            try:
                summaries.append(self._complete(part, SUMMARY_PART_SYSTEM))
            except Exception as e:
                logger.warning("Summary generation failed for a slice, using extractive summary: %s", e)
                return extractive_summary(content)

        if len(summaries) == 1:
            return summaries[0] or extractive_summary(content)
        try:
            return self._complete(SUMMARY_COMBINE_PROMPT.format(summaries="\n\n".join(summaries)), SUMMARY_COMBINE_SYSTEM)
        except Exception as e:
            logger.warning("Failed to combine slice summaries: %s", e)
            return "\n\n".join(summaries)

    def key_points(self, content: str) -> list[str]:
        if self.completion is None:
            return extractive_key_points(content)
        try:
            response = self._complete(content[: self.slice_chars], KEY_POINTS_SYSTEM)
        except Exception as e:
            logger.warning("Key point extraction failed, using extractive key points: %s", e)
            return extractive_key_points(content)

        points = parse_bullets(response)
        return points or extractive_key_points(content)

    def _complete(self, prompt: str, system: str) -> str:
        return self.completion.complete(prompt, system=system, max_tokens=self.max_tokens, temperature=0.3).strip()


def parse_bullets(text: str) -> list[str]:
    """Lines of a model response that look like list items, with their markers removed."""
    points = []
    for line in text.splitlines():
        line = line.strip()
        if not BULLET.match(line):
            continue
        point = BULLET.sub("", line).strip()
        if point:
            points.append(point)
    return points


def split_sentences(content: str) -> list[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(content.strip()) if s.strip()]


def extractive_summary(content: str) -> str:
    """First two sentences, up to four flagged as important, and the last two."""
    sentences = split_sentences(content)
    if len(sentences) <= 5:
        return content.strip()

    picked = sentences[:2]
    for sentence in sentences[2:-2]:
        if len(picked) >= 6:
            break
        if IMPORTANCE_WORDS.search(sentence):
            picked.append(sentence)
    picked.extend(sentences[-2:])
    return " ".join(picked)


def extractive_key_points(content: str) -> list[str]:
    sentences = split_sentences(content)
    points = [s for s in sentences if KEY_POINT_WORDS.search(s)][:MAX_KEY_POINTS]

    if len(points) < MAX_KEY_POINTS and sentences:
        for candidate in (sentences[0], sentences[-1]):
            if candidate not in points:
                points.append(candidate)

    if len(points) < MAX_KEY_POINTS and len(sentences) > 4:
        middle = sentences[len(sentences) // 2]
        if middle not in points:
            points.append(middle)

    return points[:MAX_KEY_POINTS]


def parse_json_response(text: str) -> Any:
    """Extract JSON from Claude's response, handling markdown code blocks.

    Returns None when nothing parses.
    """
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Try extracting from ```json ... ``` or ``` ... ```
    match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            pass

    # Try finding first [ ... ] block
    match = re.search(r"\[.*\]", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    return None
