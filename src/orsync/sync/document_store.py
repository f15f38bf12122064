"""JSON file storage for the shared sync document."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Union
import logging

from pydantic import ValidationError

from .interfaces import DocumentStore
from .models import SyncDocument
from .exceptions import DocumentNotFoundError, DocumentParseError, DocumentWriteError


logger = logging.getLogger(__name__)


class JsonFileDocumentStore(DocumentStore):
    """Stores the sync document as a pretty-printed JSON file.
    
    Every write goes to a temporary file in the same directory which is then
    renamed over the document, so readers never observe a partial write and
    need no lock.
    """
    
    def __init__(self, document_path: Union[str, Path]):
        self._path = Path(document_path)
    
    @property
    def path(self) -> Path:
        return self._path
    
    async def exists(self) -> bool:
        return await asyncio.to_thread(self._path.exists)
    
    async def read(self) -> SyncDocument:
        """Read and validate the document.
        
        Raises:
            DocumentNotFoundError: When the file does not exist
            DocumentParseError: When the content is not a valid sync document
        """
        try:
            content = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except FileNotFoundError:
            raise DocumentNotFoundError(str(self._path))
        except UnicodeDecodeError as e:
            raise DocumentParseError(str(self._path), str(e))

        try:
            return SyncDocument.model_validate_json(content)
        except ValidationError as e:
            raise DocumentParseError(str(self._path), f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}")
    
    async def write(self, document: SyncDocument) -> None:
        """Atomically replace the document."""
        await asyncio.to_thread(self._write_atomic, document.to_json())
        logger.debug(f"Wrote sync document version {document.version} to {self._path}")
    
    async def create_if_absent(self, document: SyncDocument) -> bool:
        """Create the document only if none exists.
        
        The content is written to a temporary file first and then hard-linked
        into place; linking fails if the target exists, which makes creation
        both exclusive and atomic. Filesystems without hard links fall back to
        an exclusive create.
        
        Returns:
            True if this call created the document
        """
        return await asyncio.to_thread(self._create_exclusive, document.to_json())
    
    def _write_temp(self, content: str) -> Path:
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return Path(temp_name)
    
    def _write_atomic(self, content: str) -> None:
        try:
            temp_path = self._write_temp(content)
        except OSError as e:
            raise DocumentWriteError(str(self._path), str(e))
        
        try:
            os.replace(temp_path, self._path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise DocumentWriteError(str(self._path), str(e))
    
    def _create_exclusive(self, content: str) -> bool:
        try:
            temp_path = self._write_temp(content)
        except OSError as e:
            raise DocumentWriteError(str(self._path), str(e))
        
        try:
            os.link(temp_path, self._path)
            return True
        except FileExistsError:
            return False
        except OSError as e:
            logger.debug(f"Hard link not supported for {self._path} ({e}), using exclusive create")
            return self._create_without_link(content)
        finally:
            temp_path.unlink(missing_ok=True)
    
    def _create_without_link(self, content: str) -> bool:
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise DocumentWriteError(str(self._path), str(e))
        
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        return True
