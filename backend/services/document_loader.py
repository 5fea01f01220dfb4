"""Document loading service: text extraction from PDF, text and markdown files."""
import logging
import os
import re
from pathlib import Path
from typing import List

import fitz  # PyMuPDF

from models.document import Document, ExtractedText
from services.errors import UnsupportedFileError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md"}
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | {".pdf"}


def document_id_for(filename: str) -> str:
    """Stable document id derived from a file name: "Setup Guide.pdf" -> "setup-guide"."""
    return re.sub(r'[^a-z0-9]+', '-', Path(filename).stem.lower()).strip('-') or "document"


class DocumentLoader:
    """Loads and extracts plain text from supported files."""

    def __init__(self, docs_directory: str = "docs"):
        """
        Initialize DocumentLoader.

        Args:
            docs_directory: Path to directory containing source files
        """
        self.docs_directory = docs_directory

    def load(self, path: str) -> ExtractedText:
        """
        Extract text from one file.

        Args:
            path: Path to a .pdf, .txt or .md file

        Returns:
            ExtractedText; page_count is set for PDFs

        Raises:
            UnsupportedFileError: If the extension is unsupported or the file is corrupt
        """
        extension = Path(path).suffix.lower()

        if extension == ".pdf":
            return self._load_pdf(path)
        if extension in TEXT_EXTENSIONS:
            return self._load_text(path)

        raise UnsupportedFileError(
            f"Unsupported file type: {extension or '(none)'}",
            details={"path": str(path)}
        )

    def load_documents(self) -> List[Document]:
        """
        Load every supported file in the documents directory.

        Unsupported, corrupt and empty files are logged and skipped.

        Returns:
            List of Document objects sorted by file name
        """
        documents = []

        if not os.path.exists(self.docs_directory):
            logger.error(f"Documents directory not found: {self.docs_directory}")
            return documents

        filenames = sorted(
            f for f in os.listdir(self.docs_directory)
            if Path(f).suffix.lower() in SUPPORTED_EXTENSIONS
        )
        logger.info(f"Found {len(filenames)} supported files in {self.docs_directory}")

        for filename in filenames:
            filepath = os.path.join(self.docs_directory, filename)

            try:
                extracted = self.load(filepath)
            except UnsupportedFileError as e:
                logger.error(f"Error loading {filename}: {str(e)}")
                continue

            if not extracted.content.strip():
                logger.warning(f"Skipping {filename}: no extractable text")
                continue

            documents.append(Document(
                document_id=document_id_for(filename),
                name=filename,
                content=extracted.content,
                page_count=extracted.page_count
            ))
            logger.info(f"Loaded {filename}: {len(extracted.content)} characters")

        logger.info(f"Successfully loaded {len(documents)} documents")
        return documents

    def _load_pdf(self, filepath: str) -> ExtractedText:
        try:
            pdf_document = fitz.open(filepath)
        except Exception as e:
            logger.error(f"Failed to open PDF {filepath}: {str(e)}")
            raise UnsupportedFileError(f"Corrupt or unreadable PDF: {e}", details={"path": str(filepath)}) from e

        try:
            pages = [page.get_text() for page in pdf_document]
        finally:
            pdf_document.close()

        return ExtractedText(content="\n\n".join(pages), page_count=len(pages))

    @staticmethod
    def _load_text(filepath: str) -> ExtractedText:
        try:
            with open(filepath, "r", encoding="utf-8") as handle:
                return ExtractedText(content=handle.read())
        except (OSError, UnicodeDecodeError) as e:
            raise UnsupportedFileError(f"Unreadable text file: {e}", details={"path": str(filepath)}) from e
