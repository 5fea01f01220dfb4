"""Answer validator for completeness and citation checks."""
import re
from typing import List, Sequence, Tuple

from config import LOW_CONFIDENCE_THRESHOLD
from models.retrieval import RetrievalCandidate, ValidationResult

LOW_CONFIDENCE_DISCLAIMER = (
    "\n\n⚠️ *Note: This answer may be incomplete or uncertain due to limited "
    "relevant information in your documents. Please verify the information independently.*"
)


class AnswerValidator:
    """Checks a generated answer against the context it was generated from."""

    # Characters that close a complete sentence
    SENTENCE_ENDINGS = ('.', '!', '?', '"', "'", ')', ']')

    # Markdown endings that also count as complete
    COMPLETE_ENDING_PATTERNS = [
        re.compile(r'[.!?]["\')\]]*\s*$'),
        re.compile(r'\*+\s*$'),
        re.compile(r'`+\s*$'),
    ]

    # Endings that indicate a truncated answer
    INCOMPLETE_PATTERNS = [
        re.compile(r'\.\.\.\s*$'),
        re.compile(r',\s*$'),
        re.compile(r':\s*$'),
        re.compile(r'-\s*$'),
        re.compile(r'\band\s*$', re.IGNORECASE),
        re.compile(r'\bor\s*$', re.IGNORECASE),
        re.compile(r'\bthe\s*$', re.IGNORECASE),
        re.compile(r'\ba\s*$', re.IGNORECASE),
        re.compile(r'\ban\s*$', re.IGNORECASE),
    ]

    CITATION_PATTERNS = [
        re.compile(r'\[Source\s*(\d+)\]', re.IGNORECASE),
        re.compile(r'\[(\d+)\]'),
    ]

    # Phrases suggesting the sources did not contain the answer
    UNCERTAINTY_PHRASES = [
        "i couldn't find",
        "no information",
        "not mentioned",
        "not specified",
        "unclear",
        "not enough information",
        "cannot determine",
        "no relevant",
        "doesn't contain",
        "don't have",
    ]

    def __init__(self, low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD):
        """
        Initialize AnswerValidator.

        Args:
            low_confidence_threshold: Fraction (0-1) below which a confidence
                percentage counts as low
        """
        self.low_confidence_threshold = low_confidence_threshold

    def validate(
        self,
        query: str,
        answer: str,
        sources: Sequence[RetrievalCandidate],
        confidence: int
    ) -> ValidationResult:
        """
        Validate an answer.

        Args:
            query: Original user query
            answer: Generated answer text
            sources: Candidates in the order they were numbered in the context
            confidence: Retrieval confidence percentage (0-99)

        Returns:
            ValidationResult with issue descriptions
        """
        issues = []

        is_complete = self.check_completeness(answer)
        if not is_complete:
            issues.append("Answer appears to be incomplete (does not end with proper punctuation)")

        citations_valid, invalid_citations = self.verify_citations(answer, sources)
        if not citations_valid:
            issues.append(f"Invalid citation references: {invalid_citations}")

        needs_more_context = self.needs_more_context(answer, confidence)
        if needs_more_context:
            issues.append("Answer may benefit from additional context")

        if self.is_low_confidence(confidence):
            threshold = round(self.low_confidence_threshold * 100)
            issues.append(f"Low confidence ({confidence}%) - below {threshold}% threshold")

        return ValidationResult(
            confidence_value=confidence,
            issues=issues,
            citations_valid=citations_valid,
            invalid_citations=invalid_citations,
            is_complete=is_complete,
            needs_more_context=needs_more_context
        )

    def check_completeness(self, answer: str) -> bool:
        if not answer or not answer.strip():
            return False

        trimmed = answer.strip()
        ends_properly = trimmed.endswith(self.SENTENCE_ENDINGS) or any(
            pattern.search(trimmed) for pattern in self.COMPLETE_ENDING_PATTERNS
        )
        truncated = any(pattern.search(trimmed) for pattern in self.INCOMPLETE_PATTERNS)

        return ends_properly and not truncated

    def verify_citations(
        self,
        answer: str,
        sources: Sequence[RetrievalCandidate]
    ) -> Tuple[bool, List[int]]:
        """
        Check that every ``[Source N]`` or ``[N]`` citation points at a source.

        Returns:
            (all citations valid, sorted invalid citation numbers)
        """
        if not answer or not sources:
            return True, []

        cited = set()
        for pattern in self.CITATION_PATTERNS:
            cited.update(int(match.group(1)) for match in pattern.finditer(answer))

        invalid = sorted(number for number in cited if number < 1 or number > len(sources))
        return not invalid, invalid

    def needs_more_context(self, answer: str, confidence: int) -> bool:
        if not answer:
            return True

        answer_lower = answer.lower()
        uncertain = any(phrase in answer_lower for phrase in self.UNCERTAINTY_PHRASES)
        return uncertain or self.is_low_confidence(confidence)

    def is_low_confidence(self, confidence: int) -> bool:
        return confidence < self.low_confidence_threshold * 100

    def add_disclaimer_if_needed(self, answer: str, confidence: int) -> str:
        """Append the low-confidence disclaimer when confidence is below threshold."""
        if self.is_low_confidence(confidence):
            return answer + LOW_CONFIDENCE_DISCLAIMER
        return answer
