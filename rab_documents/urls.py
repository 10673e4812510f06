from django.urls import path

from . import views

urlpatterns = [
    path("", views.document_list_view, name="document_list"),
    path("template/<str:kind>/", views.template_view, name="document_template"),
    path("<str:document_id>/", views.document_detail_view, name="document_detail"),
    path("<str:document_id>/items/", views.insert_item_view, name="document_insert_item"),
    path("<str:document_id>/items/move/", views.move_item_view, name="document_move_item"),
    path("<str:document_id>/items/<str:item_id>/", views.update_item_view, name="document_update_item"),
    path("<str:document_id>/items/<str:item_id>/cell/", views.cell_input_view, name="document_cell_input"),
    path("<str:document_id>/items/<str:item_id>/toggle-delete/", views.toggle_delete_view, name="document_toggle_delete"),
    path("<str:document_id>/items/<str:item_id>/toggle-edit/", views.toggle_edit_view, name="document_toggle_edit"),
    path("<str:document_id>/items/<str:item_id>/save-row/", views.save_row_view, name="document_save_row"),
    path("<str:document_id>/items/<str:item_id>/price-source/", views.price_source_view, name="document_price_source"),
    path("<str:document_id>/items/<str:item_id>/ahs/", views.apply_breakdown_view, name="document_apply_ahs"),
    path("<str:document_id>/items/<str:item_id>/promote/", views.promote_item_view, name="document_promote_item"),
    path("<str:document_id>/ahs/lookup/", views.component_lookup_view, name="document_component_lookup"),
    path("<str:document_id>/save/", views.save_view, name="document_save"),
    path("<str:document_id>/lock/", views.lock_view, name="document_lock"),
    path("<str:document_id>/revisions/", views.start_revision_view, name="document_start_revision"),
    path("<str:document_id>/approval/", views.request_approval_view, name="document_request_approval"),
    path("<str:document_id>/resolve/", views.resolve_prices_view, name="document_resolve_prices"),
    path("<str:document_id>/resolve/background/", views.resolve_prices_background_view, name="document_resolve_background"),
    path("<str:document_id>/import/", views.import_view, name="document_import"),
    path("<str:document_id>/export/<str:fmt>/", views.export_view, name="document_export"),
]
