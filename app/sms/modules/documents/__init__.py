"""
Documents module.

Controlled documents move through a configurable workflow:
- Workflow definitions (states, transitions, conditions, actions) are JSON, interpreted at runtime
- Approvals and reviews feed back into the workflow via triggers
- Documents are soft-deleted, never while under legal hold
- Meaningful actions are recorded to the append-only audit trail
"""
