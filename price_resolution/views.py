import logging

from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from price_resolution.catalogs import default_price_catalog, default_work_catalog

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = 10


@api_view(["GET", "POST"])
def price_catalog_view(request):
    catalog = default_price_catalog()
    if request.method == "GET":
        return Response({"items": [entry.to_dict() for entry in catalog.all()]})

    try:
        entry = catalog.add(request.data)
    except ValidationError as exc:
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return Response(entry.to_dict(), status=status.HTTP_201_CREATED)


@api_view(["GET"])
def price_suggestions_view(request):
    """Autocomplete for component names typed in the AHS editor."""
    fragment = request.GET.get("q", "")
    results = default_price_catalog().search_substring(fragment, SUGGESTION_LIMIT)
    return Response({"query": fragment, "items": [entry.to_dict() for entry in results]})


@api_view(["GET", "POST"])
def work_catalog_view(request):
    catalog = default_work_catalog()
    if request.method == "GET":
        return Response({"items": [entry.to_dict() for entry in catalog.all()]})

    try:
        entry = catalog.add(request.data)
    except ValidationError as exc:
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return Response(entry.to_dict(), status=status.HTTP_201_CREATED)
