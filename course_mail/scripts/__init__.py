"""Operational scripts: environment/SMTP validation and schema setup."""
