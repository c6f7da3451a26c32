"""
Service-layer exceptions.

Everything derives from ValueError so callers that only care about "bad input or
bad state" can keep catching ValueError, as the module services always have.
"""


class NotFoundError(ValueError):
    pass


class ConsentError(ValueError):
    pass


class WorkflowError(ValueError):
    pass
