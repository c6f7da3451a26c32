"""
Personas module.

HR-style personnel records with GDPR handling:
- Data-processing consent is mandatory at creation; consent changes are logged
- Sensitive fields are masked on read unless explicitly requested
- Records are anonymized, never hard-deleted
"""
