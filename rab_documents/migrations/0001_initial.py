from django.db import migrations, models

import rab_documents.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="RabDocument",
            fields=[
                (
                    "id",
                    models.CharField(
                        default=rab_documents.models.new_document_id,
                        max_length=64,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("RAB", "Rencana Anggaran Biaya"), ("BQ", "Bill of Quantity")],
                        default="RAB",
                        max_length=3,
                    ),
                ),
                ("empr", models.CharField(blank=True, default="", help_text="eMPR reference number", max_length=100)),
                ("project_name", models.CharField(blank=True, default="", max_length=255)),
                ("pic", models.CharField(blank=True, default="", help_text="Person in charge", max_length=255)),
                ("creator_name", models.CharField(blank=True, default="", max_length=255)),
                ("approver_name", models.CharField(blank=True, default="", max_length=255)),
                ("work_duration_days", models.PositiveIntegerField(blank=True, null=True)),
                ("status", models.CharField(default="Pending", max_length=50)),
                ("is_locked", models.BooleanField(default=False)),
                ("revision_label", models.CharField(default="manual", max_length=50)),
                ("items", models.JSONField(blank=True, default=list)),
                ("revision_history", models.JSONField(blank=True, default=list)),
                ("working_state", models.JSONField(blank=True, null=True)),
                ("approval_request", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "rab_documents",
                "ordering": ["-updated_at"],
            },
        ),
    ]
