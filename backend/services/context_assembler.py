"""Assembles the bounded, position-ordered context handed to the generation step."""
import logging
import math
from typing import Callable, Dict, List, Optional

from config import MAX_SOURCES
from models.retrieval import AssembledContext, RetrievalCandidate

logger = logging.getLogger(__name__)

SOURCE_SEPARATOR = "\n\n---\n\n"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 characters per token."""
    return math.ceil(len(text) / 4)


class ContextAssembler:
    """Groups candidates by document, orders them by position and truncates."""

    def __init__(
        self,
        max_chunks: int = MAX_SOURCES,
        order_by_position: bool = True,
        token_counter: Optional[Callable[[str], int]] = None
    ):
        self.max_chunks = max_chunks
        self.order_by_position = order_by_position
        self.token_counter = token_counter or estimate_tokens

    def assemble(
        self,
        candidates: List[RetrievalCandidate],
        max_chunks: Optional[int] = None,
        order_by_position: Optional[bool] = None
    ) -> AssembledContext:
        """
        Build the assembled context.

        Candidates are grouped by source document in order of first
        appearance, sorted by segment position within each group, then
        truncated to ``max_chunks``.

        Args:
            candidates: Relevance-ordered candidates
            max_chunks: Overrides the configured maximum for this call
            order_by_position: Overrides the configured ordering for this call;
                False keeps the input order

        Returns:
            AssembledContext with formatted text and token estimate
        """
        limit = self.max_chunks if max_chunks is None else max_chunks

        if not candidates or limit <= 0:
            return AssembledContext(ordered_candidates=[], total_count=0)

        if order_by_position is None:
            order_by_position = self.order_by_position

        if order_by_position:
            ordered = self.order_by_document_position(candidates)
        else:
            ordered = list(candidates)
        ordered = ordered[:limit]

        formatted = self.format_context(ordered)

        return AssembledContext(
            ordered_candidates=ordered,
            total_count=len(ordered),
            formatted_context=formatted,
            total_tokens=self.token_counter(formatted),
            document_order=self._document_order(ordered)
        )

    @staticmethod
    def order_by_document_position(candidates: List[RetrievalCandidate]) -> List[RetrievalCandidate]:
        """Group by document (first-appearance order), sort each group by position."""
        groups: Dict[str, List[RetrievalCandidate]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.source_document_id, []).append(candidate)

        ordered = []
        for group in groups.values():
            if all(candidate.index is not None for candidate in group):
                group.sort(key=lambda candidate: candidate.index)
            elif all(candidate.start_offset is not None for candidate in group):
                group.sort(key=lambda candidate: candidate.start_offset)
            ordered.extend(group)

        return ordered

    @staticmethod
    def format_context(candidates: List[RetrievalCandidate]) -> str:
        blocks = []
        for number, candidate in enumerate(candidates, start=1):
            part = f" (Part {candidate.index + 1})" if candidate.index is not None else ""
            blocks.append(f"[Source {number}: {candidate.source_document_name}{part}]\n{candidate.content}")
        return SOURCE_SEPARATOR.join(blocks)

    @staticmethod
    def _document_order(candidates: List[RetrievalCandidate]) -> Dict[str, List[int]]:
        order: Dict[str, List[int]] = {}
        for position, candidate in enumerate(candidates):
            order.setdefault(candidate.source_document_id, []).append(position)
        return order
