import logging
from functools import wraps

import sentry_sdk
from asgiref.sync import async_to_sync
from django.core.exceptions import ValidationError
from django.http import Http404, HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes
from rest_framework.parsers import MultiPartParser
from rest_framework.response import Response

from price_resolution.catalogs import default_price_catalog, default_work_catalog
from price_resolution.generator import default_generator
from price_resolution.resolver import ResolutionStrategy
from rab_documents.repository import DocumentNotFound, default_repository, document_version, save_if_unchanged
from rab_documents.services.export import (
    PDF_CONTENT_TYPE,
    XLSX_CONTENT_TYPE,
    build_export,
    render_pdf,
    render_xlsx,
)
from rab_documents.services.kinds import DocumentKind
from rab_documents.services.lifecycle import DocumentEditor, LifecycleError
from rab_documents.services.pricing import build_ahs_editor, build_resolver
from rab_documents.services.spreadsheet_import import import_spreadsheet
from rab_documents.services.template import build_template, template_filename
from rab_documents.tasks import resolve_document_prices
from rab_items.models import Component, ComponentSource
from rab_items.services.item_store import MutationBlocked

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_VALUES


def _item_ids(data):
    item_ids = data.get("item_ids")
    if item_ids is None:
        return None
    if not isinstance(item_ids, list) or not all(isinstance(item_id, str) for item_id in item_ids):
        raise ValidationError({"item_ids": ["item_ids harus berupa daftar id item."]})
    return item_ids


def _document_summary(document):
    data = document.to_dict()
    for key in ("items", "revision_history", "working_state"):
        data.pop(key)
    data["revisions"] = [
        {"index": index, "timestamp": snapshot.to_dict()["timestamp"], "items": len(snapshot.items)}
        for index, snapshot in enumerate(document.revision_history)
    ]
    return data


def _document_payload(editor: DocumentEditor, show_deleted: bool = False):
    return {
        **_document_summary(editor.document),
        "dirty": editor.dirty,
        "view": editor.view(show_deleted).to_dict(),
    }


def _attachment(payload: bytes, content_type: str, filename: str) -> HttpResponse:
    resp = HttpResponse(payload, content_type=content_type)
    resp["Content-Disposition"] = f'attachment; filename="{filename}"'
    return resp


def document_endpoint(view):
    """Load the document, run ``view`` with its editor and persist on success.

    Validation problems become 400, blocked mutations and invalid lifecycle
    transitions 409, and an unknown document 404. Nothing is saved when the
    view raises, or when the stored document changed while the view ran (409).
    """

    @wraps(view)
    def wrapper(request, document_id, *args, **kwargs):
        repository = default_repository()
        try:
            document = repository.get(document_id)
        except DocumentNotFound:
            return Response({"detail": f"Dokumen '{document_id}' tidak ditemukan."}, status=status.HTTP_404_NOT_FOUND)

        loaded = document_version(document)
        editor = DocumentEditor(document)
        try:
            response = view(request, editor, *args, **kwargs)
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except (MutationBlocked, LifecycleError) as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)

        if request.method != "GET":
            editor.sync_working_state()
            try:
                save_if_unchanged(repository, document, loaded)
            except MutationBlocked as exc:
                return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
        return response

    return wrapper


# ---------------------------------------------------------------- documents


@api_view(["GET", "POST"])
def document_list_view(request):
    repository = default_repository()
    if request.method == "GET":
        return Response({"items": [_document_summary(document) for document in repository.list()]})

    try:
        document = repository.create(request.data)
    except ValidationError as exc:
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return Response(_document_payload(DocumentEditor(document)), status=status.HTTP_201_CREATED)


@api_view(["GET", "PATCH"])
@document_endpoint
def document_detail_view(request, editor):
    if request.method == "PATCH":
        editor.update_header(request.data)
        return Response(_document_payload(editor))

    editor.view_revision(request.GET.get("revision"))
    return Response(_document_payload(editor, _flag(request.GET.get("show_deleted"))))


@api_view(["GET"])
def template_view(request, kind):
    try:
        document_kind = DocumentKind.parse(kind)
    except ValidationError as exc:
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return _attachment(build_template(document_kind), XLSX_CONTENT_TYPE, template_filename(document_kind))


# -------------------------------------------------------------------- rows


@api_view(["POST"])
@document_endpoint
def insert_item_view(request, editor):
    store = editor.store
    row_kind = request.data.get("type", "item")
    if row_kind == "category":
        item = store.insert_category()
    elif row_kind == "item":
        item = store.insert_item()
    elif row_kind == "sub_item":
        item = store.insert_sub_item(str(request.data.get("parent_id") or ""))
    else:
        raise ValidationError({"type": ["Gunakan 'category', 'item' atau 'sub_item'."]})
    return Response(
        {"item": item.to_dict() if item else None, "document": _document_payload(editor)},
        status=status.HTTP_201_CREATED if item else status.HTTP_200_OK,
    )


@api_view(["POST"])
@document_endpoint
def move_item_view(request, editor):
    try:
        index = int(request.data.get("index"))
    except (TypeError, ValueError):
        raise ValidationError({"index": ["Index harus berupa bilangan bulat."]}) from None
    direction = request.data.get("direction")
    if _flag(request.data.get("with_children")):
        moved = editor.store.move_block(index, direction)
    else:
        moved = editor.store.move_item(index, direction)
    return Response({"moved": moved, "document": _document_payload(editor)})


@api_view(["PATCH"])
@document_endpoint
def update_item_view(request, editor, item_id):
    field_name = request.data.get("field")
    if not field_name:
        raise ValidationError({"field": ["Nama field wajib diisi."]})
    item = editor.store.update_field(item_id, field_name, request.data.get("value"))
    return Response({"item": item.to_dict(), "document": _document_payload(editor)})


@api_view(["POST"])
@document_endpoint
def cell_input_view(request, editor, item_id):
    item = editor.store.apply_cell_input(item_id, request.data.get("field"), request.data.get("raw"))
    return Response({"item": item.to_dict(), "document": _document_payload(editor)})


@api_view(["POST"])
@document_endpoint
def toggle_delete_view(request, editor, item_id):
    deleted = editor.store.toggle_delete(item_id)
    return Response({"is_deleted": deleted, "document": _document_payload(editor)})


@api_view(["POST"])
@document_endpoint
def toggle_edit_view(request, editor, item_id):
    editing = editor.store.toggle_edit(item_id)
    return Response({"is_editing": editing, "document": _document_payload(editor)})


@api_view(["POST"])
@document_endpoint
def save_row_view(request, editor, item_id):
    editor.store.save_row(item_id)
    return Response(_document_payload(editor))


# --------------------------------------------------------------- lifecycle


@api_view(["POST"])
@document_endpoint
def save_view(request, editor):
    editor.save()
    return Response(_document_payload(editor))


@api_view(["POST"])
@document_endpoint
def lock_view(request, editor):
    editor.lock()
    return Response(_document_payload(editor))


@api_view(["POST"])
@document_endpoint
def start_revision_view(request, editor):
    editor.start_revision()
    return Response(_document_payload(editor), status=status.HTTP_201_CREATED)


@api_view(["POST"])
@document_endpoint
def request_approval_view(request, editor):
    approval = editor.request_approval(request.data.get("sent_to"), request.data.get("requested_by") or "Admin")
    return Response({"approval_request": approval.to_dict(), "document": _document_payload(editor)})


# ----------------------------------------------------------------- pricing


@api_view(["POST"])
@document_endpoint
def resolve_prices_view(request, editor):
    strategy = ResolutionStrategy.parse(request.data.get("strategy"))
    resolver = build_resolver(editor, work_catalog=default_work_catalog(), generator=default_generator())
    with sentry_sdk.start_span(op="http.resolve_prices", name=editor.document.id):
        result = async_to_sync(resolver.resolve_prices)(strategy, _item_ids(request.data))
    return Response({**result.to_dict(), "document": _document_payload(editor)})


@api_view(["POST"])
def resolve_prices_background_view(request, document_id):
    """Queue a resolution; the task loads and saves the document itself."""
    try:
        strategy = ResolutionStrategy.parse(request.data.get("strategy"))
        item_ids = _item_ids(request.data)
        editor = DocumentEditor(default_repository().get(document_id))
        editor.store.ensure_mutable("resolve_prices")
    except DocumentNotFound:
        return Response({"detail": f"Dokumen '{document_id}' tidak ditemukan."}, status=status.HTTP_404_NOT_FOUND)
    except ValidationError as exc:
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    except MutationBlocked as exc:
        return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)

    task = resolve_document_prices.delay(document_id, strategy.value, item_ids)
    return Response({"task_id": task.id, "status": "queued"}, status=status.HTTP_202_ACCEPTED)


@api_view(["POST"])
@document_endpoint
def price_source_view(request, editor, item_id):
    resolver = build_resolver(editor, work_catalog=default_work_catalog(), generator=default_generator())
    result = async_to_sync(resolver.apply_local_price_source)(item_id, request.data.get("strategy"))
    return Response({**result.to_dict(), "document": _document_payload(editor)})


def _ahs_editor(editor):
    return build_ahs_editor(
        editor,
        price_catalog=default_price_catalog(),
        work_catalog=default_work_catalog(),
        generator=default_generator(),
    )


@api_view(["POST"])
@document_endpoint
def apply_breakdown_view(request, editor, item_id):
    ahs = _ahs_editor(editor)
    item = ahs.apply_breakdown(item_id, request.data.get("components") or [], request.data.get("surcharges"))
    saved = []
    if _flag(request.data.get("save_components")):
        saved = ahs.save_components_to_price_catalog(item.price_breakdown)
    return Response(
        {
            "item": item.to_dict(),
            "saved_components": [entry.to_dict() for entry in saved],
            "document": _document_payload(editor),
        }
    )


@api_view(["POST"])
@document_endpoint
def promote_item_view(request, editor, item_id):
    entry = _ahs_editor(editor).promote_to_work_catalog(item_id)
    if entry is None:
        return Response({"created": False, "detail": "Pekerjaan dengan nama yang sama sudah ada di database."})
    return Response({"created": True, "entry": entry.to_dict()}, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@document_endpoint
def component_lookup_view(request, editor):
    name = str(request.data.get("name") or "").strip()
    if not name:
        raise ValidationError({"name": ["Nama komponen wajib diisi."]})
    ahs = _ahs_editor(editor)
    component = Component(id=str(request.data.get("id") or "lookup"), name=name)
    if _flag(request.data.get("use_ai")):
        component = async_to_sync(ahs.lookup_component_with_ai)(component)
    else:
        component = ahs.lookup_component(component)
    return Response({"component": component.to_dict(), "found": component.source is not ComponentSource.MANUAL})


# ---------------------------------------------------------- import / export


@api_view(["POST"])
@parser_classes([MultiPartParser])
@document_endpoint
def import_view(request, editor):
    uploaded = request.FILES.get("file")
    if uploaded is None:
        raise ValidationError({"file": ["File wajib diunggah."]})
    summary = import_spreadsheet(editor.store, uploaded, editor.document.kind)
    return Response({"import": summary.to_dict(), "document": _document_payload(editor)})


@api_view(["GET"])
@document_endpoint
def export_view(request, editor, fmt):
    if fmt not in {"xlsx", "pdf"}:
        raise Http404("Unsupported format")
    editor.view_revision(request.GET.get("revision"))
    export = build_export(editor, _flag(request.GET.get("show_deleted")))
    if fmt == "pdf":
        return _attachment(render_pdf(export), PDF_CONTENT_TYPE, export.filename("pdf"))
    return _attachment(render_xlsx(export), XLSX_CONTENT_TYPE, export.filename("xlsx"))
