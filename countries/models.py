from django.db import models
from django.utils import timezone


class Country(models.Model):
    """
    One row per country, keyed case-insensitively by ``name_key``.

    ``name`` keeps the casing reported by the source; ``name_key`` is its
    lower-cased form and carries the unique index used by lookups and upserts.
    """
    name = models.CharField(max_length=255)
    name_key = models.CharField(max_length=255, unique=True, editable=False)
    capital = models.CharField(max_length=255, null=True, blank=True)
    region = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    population = models.BigIntegerField()
    currency_code = models.CharField(max_length=10, null=True, blank=True, db_index=True)
    exchange_rate = models.FloatField(null=True, blank=True)
    estimated_gdp = models.FloatField(default=0)
    flag_url = models.URLField(max_length=500, null=True, blank=True)
    last_refreshed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'countries'
        verbose_name_plural = 'countries'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(population__gt=0),
                name='countries_population_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(estimated_gdp__gte=0),
                name='countries_estimated_gdp_non_negative',
            ),
        ]

    def save(self, *args, **kwargs):
        self.name_key = self.name.lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name
