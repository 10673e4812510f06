"""Document lifecycle: draft, lock, revise, and the derived read model.

``DocumentEditor`` owns the ``LineItemStore`` for one document and decides
whether it may be mutated. The store is guarded while the document is locked
or while a historical revision is being viewed; every derived view (numbers,
subtotals, grand total) reads from whichever item sequence is active.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from django.core.exceptions import ValidationError
from django.utils import timezone

from price_resolution.monitoring import record_blocked_mutation
from rab_documents.services.document import (
    STATUS_AWAITING_APPROVAL,
    STATUS_FINAL,
    STATUS_PENDING,
    ApprovalRequest,
    Document,
    RevisionSnapshot,
)
from rab_documents.validators import validate_header
from rab_items.models import LineItem
from rab_items.services.item_store import LineItemStore
from rab_items.services.numbering import number_items
from rab_items.services.subtotals import SubtotalAggregator
from rab_items.utils.decimal_adapter import DecimalAdapter

logger = logging.getLogger(__name__)

CURRENT = "current"
RevisionRef = Union[int, str, None]

_NO_FLAGS = {"is_editing": False, "is_new": False, "is_deleted": False, "is_pricing_loading": False}


class LifecycleError(Exception):
    """A lifecycle transition that is not valid in the document's current state."""


@dataclass(frozen=True)
class DisplayRow:
    item: LineItem
    number: str
    subtotal: Optional[Decimal]
    flags: Mapping[str, bool]

    def to_dict(self) -> dict:
        return {
            **self.item.to_dict(),
            "number": self.number,
            "amount": DecimalAdapter.to_string(self.item.amount),
            "subtotal": DecimalAdapter.to_string(self.subtotal),
            **self.flags,
        }


@dataclass(frozen=True)
class DocumentView:
    revision: Union[int, str]
    read_only: bool
    show_deleted: bool
    rows: Tuple[DisplayRow, ...]
    grand_total: Decimal

    def to_dict(self) -> dict:
        return {
            "revision": self.revision,
            "read_only": self.read_only,
            "show_deleted": self.show_deleted,
            "rows": [row.to_dict() for row in self.rows],
            "grand_total": DecimalAdapter.to_string(self.grand_total),
        }


class DocumentEditor:
    def __init__(
        self,
        document: Document,
        *,
        clock: Callable[[], datetime] = timezone.now,
        aggregator: Optional[SubtotalAggregator] = None,
    ) -> None:
        self.document = document
        self._clock = clock
        self._aggregator = aggregator or SubtotalAggregator()
        self._viewing: Optional[int] = None
        if document.working_state:
            self.store = LineItemStore.from_state(
                document.working_state, guard=self.block_reason, on_blocked=self._on_blocked
            )
        else:
            self.store = LineItemStore(document.items, guard=self.block_reason, on_blocked=self._on_blocked)

    # --------------------------------------------------------------- state

    @property
    def viewing_revision(self) -> Optional[int]:
        return self._viewing

    @property
    def is_viewing_history(self) -> bool:
        return self._viewing is not None

    @property
    def dirty(self) -> bool:
        return self.store.dirty

    @property
    def read_only(self) -> bool:
        return self.block_reason() is not None

    def block_reason(self) -> Optional[str]:
        if self._viewing is not None:
            return f"Sedang melihat riwayat revisi {self._viewing + 1}; kembali ke versi terkini untuk mengubah."
        if self.document.is_locked:
            return "Dokumen terkunci. Mulai revisi untuk melakukan perubahan."
        return None

    def _on_blocked(self, action: str, reason: str) -> None:
        record_blocked_mutation(self.document.id, action, reason)

    def _require_live(self, action: str) -> None:
        if self._viewing is not None:
            raise LifecycleError(f"Tidak dapat {action} saat melihat riwayat revisi.")

    # ----------------------------------------------------------- lifecycle

    def lock(self) -> Document:
        self._require_live("mengunci dokumen")
        if self.document.is_locked:
            raise LifecycleError("Dokumen sudah terkunci.")
        if self.store.dirty:
            raise LifecycleError("Simpan perubahan terlebih dahulu sebelum mengunci dokumen.")

        self.store.session.clear()
        self.document.is_locked = True
        self.document.status = STATUS_FINAL
        self.sync_working_state()
        logger.info("Document %s locked", self.document.id)
        return self.document

    def start_revision(self) -> RevisionSnapshot:
        self._require_live("memulai revisi")
        if not self.document.is_locked:
            raise LifecycleError("Revisi hanya dapat dimulai dari dokumen yang terkunci.")

        snapshot = RevisionSnapshot(timestamp=self._clock(), items=self.store.items)
        self.document.revision_history.append(snapshot)
        self.document.is_locked = False
        self.document.status = STATUS_PENDING
        self.document.revision_label = f"Revisi {len(self.document.revision_history)}"
        logger.info("Document %s: %s started", self.document.id, self.document.revision_label)
        return snapshot

    def view_revision(self, revision: RevisionRef) -> None:
        """Switch the read model to a snapshot index, or back to ``"current"``."""
        if revision is None or revision == CURRENT:
            self._viewing = None
            return
        try:
            index = int(revision)
        except (TypeError, ValueError):
            raise LifecycleError(f"Revisi '{revision}' tidak valid.") from None
        if index < 0 or index >= len(self.document.revision_history):
            raise LifecycleError(f"Revisi {revision} tidak ditemukan.")
        self._viewing = index
        logger.debug("Document %s: viewing revision %d", self.document.id, index)

    def save(self) -> Tuple[LineItem, ...]:
        self._require_live("menyimpan")
        if self.document.is_locked:
            raise LifecycleError("Dokumen terkunci dan tidak dapat disimpan.")

        items = self.store.commit()
        self.document.items = items
        self.document.working_state = None
        logger.info("Document %s saved with %d item(s)", self.document.id, len(items))
        return items

    def request_approval(self, sent_to: str, requested_by: str) -> ApprovalRequest:
        self._require_live("meminta persetujuan")
        if self.document.is_locked:
            raise LifecycleError("Dokumen terkunci dan tidak dapat diajukan kembali.")
        if self.store.dirty:
            raise LifecycleError("Simpan perubahan terlebih dahulu sebelum meminta persetujuan.")
        recipient = (sent_to or "").strip()
        if not recipient:
            raise ValidationError({"sent_to": ["Penerima persetujuan tidak boleh kosong."]})

        request = ApprovalRequest(
            requested_at=self._clock(),
            requested_by=(requested_by or "").strip(),
            sent_to=recipient,
        )
        self.store.session.clear()
        self.document.approval_request = request
        self.document.status = STATUS_AWAITING_APPROVAL
        self.sync_working_state()
        logger.info("Document %s sent for approval to %s", self.document.id, recipient)
        return request

    def update_header(self, changes: Mapping[str, Any]) -> Document:
        self.store.ensure_mutable("update_header")
        for name, value in validate_header(changes, partial=True).items():
            setattr(self.document, name, value)
        return self.document

    # ---------------------------------------------------------- read model

    def active_items(self) -> Tuple[LineItem, ...]:
        if self._viewing is not None:
            return self.document.revision_history[self._viewing].items
        return self.store.items

    def _excluded(self) -> frozenset:
        if self._viewing is not None:
            return frozenset()
        return frozenset(self.store.session.deleted)

    def _flags(self, item_id: str) -> Dict[str, bool]:
        if self._viewing is not None:
            return dict(_NO_FLAGS)
        return self.store.session.flags_for(item_id)

    def numbers(self, show_deleted: bool = False) -> Dict[str, str]:
        return number_items(self.displayed_items(show_deleted))

    def displayed_items(self, show_deleted: bool = False) -> Tuple[LineItem, ...]:
        items = self.active_items()
        if show_deleted:
            return items
        excluded = self._excluded()
        return tuple(item for item in items if item.id not in excluded)

    def subtotals(self) -> Dict[str, Decimal]:
        return self._aggregator.category_subtotals(self.active_items(), self._excluded())

    def grand_total(self) -> Decimal:
        return self._aggregator.grand_total(self.active_items(), self._excluded())

    def view(self, show_deleted: bool = False) -> DocumentView:
        displayed = self.displayed_items(show_deleted)
        numbers = number_items(displayed)
        subtotals = self.subtotals()
        rows = tuple(
            DisplayRow(
                item=item,
                number=numbers.get(item.id, ""),
                subtotal=subtotals.get(item.id) if item.is_category else None,
                flags=self._flags(item.id),
            )
            for item in displayed
        )
        return DocumentView(
            revision=CURRENT if self._viewing is None else self._viewing,
            read_only=self.read_only,
            show_deleted=show_deleted,
            rows=rows,
            grand_total=self.grand_total(),
        )

    # --------------------------------------------------------- persistence

    def sync_working_state(self) -> None:
        """Keep unsaved edits (and open-row flags) on the document for the next request."""
        session = self.store.session
        has_flags = bool(session.editing or session.new or session.deleted or session.pricing_loading)
        self.document.working_state = self.store.to_state() if (self.store.dirty or has_flags) else None
