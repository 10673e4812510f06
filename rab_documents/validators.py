from __future__ import annotations

from typing import Any, Dict, Mapping

from django.core.exceptions import ValidationError

from rab_documents.services.document import HEADER_FIELDS
from rab_documents.services.kinds import DocumentKind
from rab_items.services.validation import ErrorCollector, NumericParser

_TEXT_FIELDS = tuple(name for name in HEADER_FIELDS if name != "work_duration_days")


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def validate_header(payload: Mapping[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """Clean document header fields.

    With ``partial`` only the keys present in ``payload`` are returned, which
    is how header edits on an existing document are applied.
    """
    errors = ErrorCollector()
    unknown = set(payload) - set(HEADER_FIELDS) - {"kind"}
    for name in sorted(unknown):
        errors.add(name, f"Field '{name}' tidak dikenal.")

    cleaned: Dict[str, Any] = {}
    for name in _TEXT_FIELDS:
        if partial and name not in payload:
            continue
        cleaned[name] = _clean_text(payload.get(name))

    if not partial or "work_duration_days" in payload:
        raw = payload.get("work_duration_days")
        duration = NumericParser(errors, "work_duration_days").parse(raw)
        if duration is not None and (duration < 0 or duration != duration.to_integral_value()):
            errors.add("work_duration_days", "Lama pekerjaan harus berupa bilangan bulat positif.")
        cleaned["work_duration_days"] = int(duration) if duration else None

    if not partial and not cleaned.get("project_name"):
        errors.add("project_name", "Nama proyek tidak boleh kosong.")

    if not partial:
        try:
            cleaned["kind"] = DocumentKind.parse(payload.get("kind") or DocumentKind.RAB.value)
        except ValidationError as exc:
            for message in exc.message_dict["kind"]:
                errors.add("kind", message)
    elif "kind" in payload:
        errors.add("kind", "Jenis dokumen tidak dapat diubah.")

    errors.raise_if_any()
    return cleaned
