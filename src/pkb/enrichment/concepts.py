"""Concept extraction and concept-graph updates."""

import logging
from typing import Any

from ..ingest.chunker import chunk_text
from ..llm import CompletionService
from ..models import Concept, ConceptType, concept_id_for_name
from ..storage.metadata import MetadataStore
from .enricher import parse_json_response
from .prompts import CONCEPT_EXTRACTION_PROMPT, CONCEPT_EXTRACTION_SYSTEM

logger = logging.getLogger(__name__)


class ConceptExtractor:
    """Asks the completion collaborator for the concepts in a piece of text."""

    def __init__(self, completion: CompletionService, slice_chars: int = 10000, max_tokens: int = 1000):
        self.completion = completion
        self.slice_chars = slice_chars
        self.max_tokens = max_tokens

    def slices(self, content: str) -> list[str]:
        if len(content) <= self.slice_chars:
            return [content] if content.strip() else []
        return chunk_text(content, self.slice_chars, 0)

    def extract(self, text: str) -> list[Concept]:
        """Concepts found in one slice; an unusable response yields an empty list."""
        try:
            response = self.completion.complete(
                CONCEPT_EXTRACTION_PROMPT.format(text=text),
                system=CONCEPT_EXTRACTION_SYSTEM,
                max_tokens=self.max_tokens,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning("Concept extraction call failed: %s", e)
            return []

        data = parse_json_response(response)
        if not isinstance(data, list):
            logger.warning("Concept extraction returned no JSON array, skipping slice")
            return []
        return parse_concepts(data)


def parse_concepts(items: list[Any]) -> list[Concept]:
    """Validate raw ``{name, type, description}`` entries into Concepts."""
    concepts = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        ctype = item.get("type")
        if not isinstance(name, str) or not name.strip() or not ctype:
            continue
        description = item.get("description")
        concepts.append(
            Concept(
                id=concept_id_for_name(name),
                name=name.strip(),
                type=ConceptType.coerce(ctype),
                description=description if isinstance(description, str) and description else None,
            )
        )
    return concepts


class GraphBuilder:
    """Folds extracted concepts into the stored concept graph."""

    def __init__(self, store: MetadataStore, related_delta: float = 0.5):
        self.store = store
        self.related_delta = related_delta

    def add_concepts(self, document_id: str, concepts: list[Concept]) -> list[Concept]:
        if not concepts:
            return []
        return self.store.record_concepts(document_id, concepts, self.related_delta)
