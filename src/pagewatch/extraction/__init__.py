"""
Structured extraction of findings from page text.
"""

from .gemini_client import GeminiExtractor
from .orchestrator import ExtractionOrchestrator
from .prompts import build_deep_analysis_prompt, build_filter_links_prompt
from .validation import (
    build_summary,
    degraded_result,
    normalize_finding,
    parse_payload,
    strip_code_fences,
    validate_response,
)

__all__ = [
    "ExtractionOrchestrator",
    "GeminiExtractor",
    "build_deep_analysis_prompt",
    "build_filter_links_prompt",
    "build_summary",
    "degraded_result",
    "normalize_finding",
    "parse_payload",
    "strip_code_fences",
    "validate_response",
]
