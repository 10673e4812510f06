from django.apps import AppConfig


class RabDocumentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rab_documents"
    verbose_name = "RAB and BQ documents"
