from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PriceCatalogItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(db_index=True, max_length=255)),
                ("category", models.CharField(default="Material", max_length=100)),
                ("unit", models.CharField(blank=True, default="", max_length=50)),
                ("unit_price", models.DecimalField(decimal_places=2, default=0, max_digits=20)),
                ("source_note", models.CharField(blank=True, default="", max_length=255)),
                ("last_updated", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "price_catalog_items",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="WorkCatalogItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(db_index=True, max_length=500)),
                ("category", models.CharField(default="Sipil", max_length=100)),
                ("unit", models.CharField(blank=True, default="", max_length=50)),
                ("default_price", models.DecimalField(decimal_places=2, default=0, max_digits=20)),
                ("default_breakdown", models.JSONField(blank=True, default=list)),
                ("source", models.CharField(blank=True, default="", max_length=50)),
                ("last_updated", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "work_catalog_items",
                "ordering": ["name"],
            },
        ),
    ]
