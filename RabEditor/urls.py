"""
URL configuration for the RabEditor project.

Document endpoints live under ``api/documents/`` and catalog endpoints under
``api/catalogs/``.
"""
from django.urls import include, path


def trigger_error(request):
    division_by_zero = 1 / 0


urlpatterns = [
    path("api/documents/", include("rab_documents.urls")),
    path("api/catalogs/", include("price_resolution.urls")),
    path("sentry-debug/", trigger_error),
]
