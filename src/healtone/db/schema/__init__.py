"""Forward-only SQL migrations for the profiles and payments tables."""

from healtone.db.schema.migrate import migrate, schema_version

__all__ = ["migrate", "schema_version"]
