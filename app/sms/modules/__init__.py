"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its models and service layer,
while reusing platform primitives (audit, DB session, errors, utils).
Every tenant-owned row carries company_id; services always filter by it.
"""
