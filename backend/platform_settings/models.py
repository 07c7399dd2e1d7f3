from django.conf import settings
from django.db import models


class DbSetting(models.Model):
    """
    Runtime override for a Django setting.

    Rows are versioned: saving a changed row inserts a new row instead of
    updating in place, so the history of a key stays queryable. The active
    value is the newest row whose effective_at is empty or already reached.
    """

    class ValueType(models.TextChoices):
        BOOL = "bool", "bool"
        INT = "int", "int"
        DECIMAL = "decimal", "decimal"
        STR = "str", "str"
        JSON = "json", "json"

    key = models.CharField(max_length=128, db_index=True)
    value_json = models.JSONField()
    value_type = models.CharField(max_length=16, choices=ValueType.choices)
    description = models.TextField(blank=True, default="")
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="platform_settings_updated",
    )
    updated_at = models.DateTimeField(auto_now=True)
    effective_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        indexes = [
            models.Index(
                fields=["key", "effective_at", "updated_at"], name="platset_key_eff_upd_idx"
            ),
        ]
        ordering = ["-updated_at"]

    def __str__(self) -> str:
        return f"{self.key} ({self.value_type})"

    def _differs_from(self, existing: "DbSetting") -> bool:
        return any(
            getattr(existing, field) != getattr(self, field)
            for field in (
                "key",
                "value_json",
                "value_type",
                "description",
                "updated_by_id",
                "effective_at",
            )
        )

    def save(self, *args, **kwargs):
        if self.pk is not None:
            using = kwargs.get("using") or self._state.db
            existing = type(self).objects.using(using).filter(pk=self.pk).first()
            if existing is not None:
                if not self._differs_from(existing):
                    return
                self.pk = None
                self._state.adding = True
                kwargs.pop("force_update", None)
                kwargs.pop("update_fields", None)
                kwargs["force_insert"] = True
        super().save(*args, **kwargs)
