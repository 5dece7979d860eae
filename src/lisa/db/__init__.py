"""DDL shipped with the package (schema.sql)."""
