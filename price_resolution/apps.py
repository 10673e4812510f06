from django.apps import AppConfig


class PriceResolutionConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "price_resolution"
    verbose_name = "Price resolution and catalogs"
