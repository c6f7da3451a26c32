"""
Compliance module.

Rule-based evaluation of personas:
- TRAINING, CERTIFICATION, DOCUMENT and CUSTOM rules, scoped by department,
  position and employment type
- Persisted violations that can be resolved or waived
- Company-wide reports
"""
