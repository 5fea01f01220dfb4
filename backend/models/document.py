"""Document data models."""
from dataclasses import dataclass
from typing import Optional

@dataclass
class ExtractedText:
    """Plain text produced by the text-extraction collaborator."""
    content: str
    page_count: Optional[int] = None

@dataclass
class Document:
    """A source document ready for segmentation."""
    document_id: str
    name: str
    content: str
    page_count: Optional[int] = None
