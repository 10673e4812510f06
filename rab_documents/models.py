import uuid

from django.db import models


def new_document_id():
    return f"doc-{uuid.uuid4().hex[:12]}"


class RabDocument(models.Model):
    """
    A RAB (cost estimate) or BQ (bill of quantity) document.

    The committed line items, every revision snapshot and the unsaved working
    state are kept as JSON; decimals inside them are plain strings.
    """

    class Kind(models.TextChoices):
        RAB = "RAB", "Rencana Anggaran Biaya"
        BQ = "BQ", "Bill of Quantity"

    id = models.CharField(primary_key=True, max_length=64, default=new_document_id)
    kind = models.CharField(max_length=3, choices=Kind.choices, default=Kind.RAB)

    empr = models.CharField(max_length=100, blank=True, default="", help_text="eMPR reference number")
    project_name = models.CharField(max_length=255, blank=True, default="")
    pic = models.CharField(max_length=255, blank=True, default="", help_text="Person in charge")
    creator_name = models.CharField(max_length=255, blank=True, default="")
    approver_name = models.CharField(max_length=255, blank=True, default="")
    work_duration_days = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(max_length=50, default="Pending")
    is_locked = models.BooleanField(default=False)
    revision_label = models.CharField(max_length=50, default="manual")

    items = models.JSONField(default=list, blank=True)
    revision_history = models.JSONField(default=list, blank=True)
    working_state = models.JSONField(null=True, blank=True)
    approval_request = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "rab_documents"
        ordering = ["-updated_at"]

    def __str__(self):
        return f"{self.kind} {self.empr or self.pk} ({self.project_name})"
