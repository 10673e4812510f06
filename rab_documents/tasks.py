"""
Celery tasks for document pricing.
"""
import logging

from celery import shared_task

from rab_documents.repository import default_repository
from rab_documents.services.pricing import resolve_document

logger = logging.getLogger(__name__)


@shared_task(bind=True, time_limit=600, soft_time_limit=570)
def resolve_document_prices(self, document_id, strategy="ahs", item_ids=None):
    """
    Resolve unit prices for a stored document in the background.

    Args:
        document_id: Id of the RAB/BQ document
        strategy: 'database', 'ahs' or 'combined'
        item_ids: Optional subset of work item ids; all active work items when omitted

    Returns:
        dict: The resolution result plus the document id
    """
    self.update_state(state="PROCESSING", meta={"status": f"Resolving {strategy} prices..."})
    result = resolve_document(default_repository(), document_id, strategy, item_ids)
    return {"document_id": document_id, **result.to_dict()}
