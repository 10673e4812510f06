from django.db import models


class PriceCatalogItem(models.Model):
    """Unit price of a single material, labour or equipment component."""

    name = models.CharField(max_length=255, db_index=True)
    category = models.CharField(max_length=100, default="Material")
    unit = models.CharField(max_length=50, blank=True, default="")
    unit_price = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    source_note = models.CharField(max_length=255, blank=True, default="")
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "price_catalog_items"
        ordering = ["name"]

    def __str__(self):
        return self.name


class WorkCatalogItem(models.Model):
    """Reusable work item with a default price and an optional default AHS."""

    name = models.CharField(max_length=500, db_index=True)
    category = models.CharField(max_length=100, default="Sipil")
    unit = models.CharField(max_length=50, blank=True, default="")
    default_price = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    default_breakdown = models.JSONField(default=list, blank=True)
    source = models.CharField(max_length=50, blank=True, default="")
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "work_catalog_items"
        ordering = ["name"]

    def __str__(self):
        return self.name
