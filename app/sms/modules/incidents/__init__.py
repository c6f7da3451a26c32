"""
Incidents module.

Safety incident logging with a small status lifecycle, plus planned SMS audits
and their findings.
"""
