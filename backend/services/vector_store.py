"""Segment persistence: in-memory store and Supabase pgvector store."""
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY
from models.chunk import Segment, StoredSegment
from services.errors import InvalidInputError, StoreError

logger = logging.getLogger(__name__)


class SegmentStore:
    """
    Persistence interface for segments and their embeddings.

    ``replace_document`` swaps a document's full segment set atomically:
    readers see either the old set or the new one, never a mix.
    """

    def replace_document(
        self,
        document_id: str,
        segments: Sequence[Segment],
        embeddings: Sequence[Sequence[float]],
        document_name: Optional[str] = None
    ) -> None:
        raise NotImplementedError

    def fetch_all(self) -> List[StoredSegment]:
        raise NotImplementedError

    def delete_document(self, document_id: str) -> int:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


def _check_replacement(document_id: str, segments: Sequence[Segment], embeddings: Sequence[Sequence[float]]) -> None:
    if len(segments) != len(embeddings):
        raise InvalidInputError(
            f"Got {len(segments)} segments but {len(embeddings)} embeddings for {document_id}"
        )
    foreign = [segment.id for segment in segments if segment.source_document_id != document_id]
    if foreign:
        raise InvalidInputError(f"Segments {foreign} do not belong to document {document_id}")


class InMemorySegmentStore(SegmentStore):
    """Process-local store; replacement builds the new set, then swaps it in under a lock."""

    def __init__(self):
        self._documents: Dict[str, List[StoredSegment]] = {}
        self._lock = threading.Lock()

    def replace_document(self, document_id, segments, embeddings, document_name=None) -> None:
        _check_replacement(document_id, segments, embeddings)

        stored = [
            StoredSegment(
                segment=segment,
                source_document_name=document_name or document_id,
                embedding=list(embedding)
            )
            for segment, embedding in zip(segments, embeddings)
        ]

        with self._lock:
            self._documents[document_id] = stored

        logger.info(f"Stored {len(stored)} segments for document {document_id}")

    def fetch_all(self) -> List[StoredSegment]:
        with self._lock:
            documents = list(self._documents.values())
        return [stored for segments in documents for stored in segments]

    def delete_document(self, document_id: str) -> int:
        with self._lock:
            removed = self._documents.pop(document_id, [])
        return len(removed)

    def count(self) -> int:
        with self._lock:
            return sum(len(segments) for segments in self._documents.values())

    def clear(self) -> None:
        with self._lock:
            self._documents = {}


class SupabaseSegmentStore(SegmentStore):
    """
    Segments stored in a Supabase table with a pgvector embedding column.

    Replacement goes through a transactional RPC. Create it in Supabase with:

    CREATE OR REPLACE FUNCTION replace_document_segments(
      p_document_id text,
      p_rows jsonb
    )
    RETURNS void
    LANGUAGE plpgsql
    AS $$
    BEGIN
      DELETE FROM document_segments WHERE document_id = p_document_id;
      INSERT INTO document_segments
      SELECT * FROM jsonb_populate_recordset(NULL::document_segments, p_rows);
    END;
    $$;
    """

    PAGE_SIZE = 1000
    REQUIRED_COLUMNS = ("segment_id", "document_id", "content", "segment_index", "embedding")

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = "document_segments",
        client: Optional[Client] = None
    ):
        """
        Initialize the store.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the segments table
            client: Pre-built Supabase client (skips credential checks)

        Raises:
            ValueError: If Supabase credentials are missing and no client is given
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")
            client = create_client(supabase_url, supabase_key)

        self.client = client
        self.table_name = table_name

        logger.info(f"Initialized SupabaseSegmentStore with table: {table_name}")

    def replace_document(self, document_id, segments, embeddings, document_name=None) -> None:
        _check_replacement(document_id, segments, embeddings)

        rows = [
            self._to_row(segment, document_name or document_id, embedding)
            for segment, embedding in zip(segments, embeddings)
        ]

        try:
            self.client.rpc(
                "replace_document_segments",
                {"p_document_id": document_id, "p_rows": rows}
            ).execute()
        except Exception as e:
            error_msg = f"Failed to replace segments of {document_id}: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg, details={"document_id": document_id})

        logger.info(f"Stored {len(rows)} segments for document {document_id}")

    def fetch_all(self) -> List[StoredSegment]:
        rows: List[Dict[str, Any]] = []
        start = 0

        try:
            while True:
                response = (
                    self.client.table(self.table_name)
                    .select("*")
                    .order("segment_id")
                    .range(start, start + self.PAGE_SIZE - 1)
                    .execute()
                )
                page = response.data or []
                rows.extend(page)
                if len(page) < self.PAGE_SIZE:
                    break
                start += self.PAGE_SIZE
        except Exception as e:
            error_msg = f"Failed to read segments: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg)

        stored = []
        for row in rows:
            segment = self._from_row(row)
            if segment is not None:
                stored.append(segment)

        if len(stored) < len(rows):
            logger.warning(f"Skipped {len(rows) - len(stored)} malformed segment rows")
        return stored

    def delete_document(self, document_id: str) -> int:
        try:
            response = self.client.table(self.table_name).delete().eq("document_id", document_id).execute()
        except Exception as e:
            error_msg = f"Failed to delete segments of {document_id}: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg, details={"document_id": document_id})

        removed = len(response.data or [])
        logger.info(f"Deleted {removed} segments of document {document_id}")
        return removed

    def count(self) -> int:
        try:
            response = self.client.table(self.table_name).select("segment_id", count="exact").execute()
            return response.count if response.count is not None else 0
        except Exception as e:
            error_msg = f"Failed to count segments: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg)

    def clear(self) -> None:
        try:
            self.client.table(self.table_name).delete().neq("segment_id", "").execute()
            logger.info("Cleared all segments from the store")
        except Exception as e:
            error_msg = f"Failed to clear segments: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg)

    @staticmethod
    def _to_row(segment: Segment, document_name: str, embedding: Sequence[float]) -> Dict[str, Any]:
        return {
            "segment_id": segment.id,
            "document_id": segment.source_document_id,
            "document_name": document_name,
            "content": segment.content,
            "segment_index": segment.index,
            "total_segments": segment.total_segments,
            "start_offset": segment.start_offset,
            "end_offset": segment.end_offset,
            "word_count": segment.word_count,
            "section_title": segment.section_title,
            "has_header": segment.has_header,
            "overlap_with_previous": segment.overlap_with_previous,
            "overlap_with_next": segment.overlap_with_next,
            "embedding": list(embedding),
        }

    def _from_row(self, row: Dict[str, Any]) -> Optional[StoredSegment]:
        """Parse a row, or log and return None if it is malformed."""
        missing = [column for column in self.REQUIRED_COLUMNS if row.get(column) is None]
        if missing:
            logger.warning(f"Skipping segment row {row.get('segment_id')}: missing {missing}")
            return None

        try:
            embedding = row["embedding"]
            # pgvector columns come back from PostgREST as "[0.1,0.2,...]"
            if isinstance(embedding, str):
                embedding = json.loads(embedding)
            embedding = [float(value) for value in embedding]

            content = row["content"]
            segment = Segment(
                id=row["segment_id"],
                source_document_id=row["document_id"],
                content=content,
                index=int(row["segment_index"]),
                total_segments=int(row.get("total_segments") or 0),
                start_offset=int(row.get("start_offset") or 0),
                end_offset=int(row.get("end_offset") or len(content)),
                word_count=int(row.get("word_count") or len(content.split())),
                section_title=row.get("section_title"),
                has_header=bool(row.get("has_header")),
                overlap_with_previous=row.get("overlap_with_previous") or "",
                overlap_with_next=row.get("overlap_with_next") or "",
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping segment row {row.get('segment_id')}: {e}")
            return None

        return StoredSegment(
            segment=segment,
            source_document_name=row.get("document_name") or row["document_id"],
            embedding=embedding
        )
