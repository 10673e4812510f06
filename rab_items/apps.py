from django.apps import AppConfig


class RabItemsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rab_items"
    verbose_name = "RAB line items"
