"""Prompt templates for Claude API enrichment."""

SUMMARY_SYSTEM = (
    "You are a document summarization assistant. Create a concise summary of the following "
    "document. Focus on key information, main points, and important details."
)

SUMMARY_PART_SYSTEM = (
    "You are a document summarization assistant. Create a concise summary of the following "
    "document excerpt. Focus on key information, main points, and important details."
)

SUMMARY_COMBINE_SYSTEM = (
    "You are a document summarization assistant. Create a unified, coherent summary from these "
    "partial document summaries. Eliminate redundancy and create a flowing narrative."
)

SUMMARY_COMBINE_PROMPT = """Document summary parts:

{summaries}"""

KEY_POINTS_SYSTEM = (
    "You are a document analysis assistant. Extract exactly 5 key points from the following "
    "document. Format each as a concise, informative bullet point. Focus on the most important "
    "information, insights, and takeaways."
)

CONCEPT_EXTRACTION_SYSTEM = """You are a document analysis assistant. Extract key concepts from the following text and classify them into these types:
1. TOPIC - Main subject areas or domains
2. CONCEPT - Important ideas, theories, or frameworks
3. PERSON - Names of individuals or organizations

Respond with a JSON array only."""

CONCEPT_EXTRACTION_PROMPT = """Text:
{text}

Respond in this exact JSON format:
[
  {{"name": "Machine Learning", "type": "TOPIC", "description": "Field of AI focused on algorithms that learn from data"}}
]"""
