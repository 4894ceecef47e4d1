"""
Structure document loading.

The structure document itself is cached under a ``static`` policy: fetched
once, kept until :meth:`StructureLoader.reload`. Every valid document is
remembered (in memory and, when a store is given, persisted) so that a
later invalid or unreachable document falls back to the last valid one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from trellis.core.errors import DocumentValidationError, QueryError, ValidationIssue
from trellis.core.validator import validate
from trellis.runtime.logging import log_with_context
from trellis.runtime.storage import KeyValueStore, load_json, save_json, storage_key
from trellis.specs.structure import StructureDocument

logger = logging.getLogger(__name__)

LAST_VALID_DOCUMENT_KEY = storage_key("structure", "last-valid-document")


class DocumentSource(Protocol):
    async def fetch_structure(self) -> Any: ...


class StructureLoader:
    """
    Loads, validates and caches the structure document.

    Concurrent ``load()`` calls share one fetch.
    """

    def __init__(self, source: DocumentSource, *, store: KeyValueStore | None = None) -> None:
        self.source = source
        self.store = store
        self.last_issues: list[ValidationIssue] = []
        self.using_fallback = False
        self._document: StructureDocument | None = None
        self._inflight: asyncio.Future[StructureDocument] | None = None

    @property
    def document(self) -> StructureDocument | None:
        return self._document

    async def load(self) -> StructureDocument:
        """Return the cached document, fetching it on first use."""
        if self._document is not None:
            return self._document
        return await self._coalesced_fetch()

    async def reload(self) -> StructureDocument:
        """Refetch the document, keeping the current one if the new one is invalid."""
        return await self._coalesced_fetch()

    async def _coalesced_fetch(self) -> StructureDocument:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future[StructureDocument]) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled():
            future.exception()

    async def _fetch(self) -> StructureDocument:
        try:
            raw = await self.source.fetch_structure()
        except Exception as e:
            fallback = await self._fallback()
            if fallback is not None:
                logger.warning("Structure fetch failed, using last valid document: %s", e)
                return fallback
            raise QueryError(f"Structure fetch failed: {e}") from e

        result = validate(raw)
        if isinstance(result, StructureDocument):
            self._document = result
            self.last_issues = []
            self.using_fallback = False
            await save_json(self.store, LAST_VALID_DOCUMENT_KEY, result.to_wire())
            logger.debug("Structure document loaded: %s", result.stats)
            return result

        self.last_issues = result
        log_with_context(
            logger,
            logging.WARNING,
            "Structure document failed validation",
            issue_count=len(result),
            issues=[issue.format() for issue in result[:10]],
        )
        fallback = await self._fallback()
        if fallback is not None:
            return fallback
        raise DocumentValidationError(result)

    async def _fallback(self) -> StructureDocument | None:
        document = self._document
        if document is None:
            document = await self._restore()
        if document is not None:
            self.using_fallback = True
        return document

    async def _restore(self) -> StructureDocument | None:
        stored = await load_json(self.store, LAST_VALID_DOCUMENT_KEY)
        if stored is None:
            return None
        result = validate(stored)
        if not isinstance(result, StructureDocument):
            logger.warning("Persisted structure document is no longer valid")
            return None
        self._document = result
        logger.info("Restored last valid structure document (version %s)", result.version)
        return result
