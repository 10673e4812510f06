from __future__ import annotations

import logging
from typing import Iterable, Optional

from asgiref.sync import async_to_sync
from django.conf import settings

from price_resolution.ahs_editor import AhsEditor
from price_resolution.catalogs import PriceCatalog, WorkCatalog, default_price_catalog, default_work_catalog
from price_resolution.generator import BreakdownGenerator, default_generator, generation_timeout
from price_resolution.resolver import PriceResolver, ResolutionResult
from rab_documents.repository import DocumentRepository, document_version, save_if_unchanged
from rab_documents.services.lifecycle import DocumentEditor

logger = logging.getLogger(__name__)


def build_resolver(
    editor: DocumentEditor,
    *,
    work_catalog: Optional[WorkCatalog] = None,
    generator: Optional[BreakdownGenerator] = None,
) -> PriceResolver:
    return PriceResolver(
        editor.store,
        work_catalog or default_work_catalog(),
        generator or default_generator(),
        timeout=generation_timeout(),
    )


def build_ahs_editor(
    editor: DocumentEditor,
    *,
    price_catalog: Optional[PriceCatalog] = None,
    work_catalog: Optional[WorkCatalog] = None,
    generator: Optional[BreakdownGenerator] = None,
) -> AhsEditor:
    return AhsEditor(
        editor.store,
        price_catalog or default_price_catalog(),
        work_catalog or default_work_catalog(),
        generator or default_generator(),
        default_work_category=settings.RAB_EDITOR["DEFAULT_WORK_CATALOG_CATEGORY"],
    )


def resolve_document(
    repository: DocumentRepository,
    document_id: str,
    strategy,
    item_ids: Optional[Iterable[str]] = None,
    *,
    work_catalog: Optional[WorkCatalog] = None,
    generator: Optional[BreakdownGenerator] = None,
) -> ResolutionResult:
    """Resolve prices on a stored document and persist its working state.

    Generation can take minutes, so the result is only written when nobody
    saved or locked the document meanwhile; otherwise ``DocumentChanged``.
    """
    document = repository.get(document_id)
    loaded = document_version(document)
    editor = DocumentEditor(document)
    resolver = build_resolver(editor, work_catalog=work_catalog, generator=generator)
    result = async_to_sync(resolver.resolve_prices)(strategy, item_ids)
    editor.sync_working_state()
    save_if_unchanged(repository, document, loaded)
    logger.info("Document %s: %s resolution finished with status %s", document_id, result.strategy.value, result.status)
    return result
