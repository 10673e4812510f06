from django.urls import path

from . import views

urlpatterns = [
    path("prices/", views.price_catalog_view, name="price_catalog"),
    path("prices/search/", views.price_suggestions_view, name="price_suggestions"),
    path("works/", views.work_catalog_view, name="work_catalog"),
]
