"""
Engine error taxonomy.

Direct operations raise these and let them propagate.
Sweeps catch them per item and record them in the job summary.
"""


class WorkflowError(Exception):
    """Base for every error the engine raises on purpose."""
    pass


class NotFound(WorkflowError):
    """Referenced record does not exist or is outside the tenant."""
    pass


class InvalidTransition(WorkflowError):
    """Requested change is not reachable from the current state."""

    def __init__(self, message: str, current=None, target=None):
        super().__init__(message)
        self.current = current
        self.target = target


class BlockedByApproval(InvalidTransition):
    """Ticket has a cost approval that is still pending."""
    pass


class Forbidden(WorkflowError):
    """Actor's role lacks the capability for the action."""
    pass


class ValidationError(WorkflowError):
    """Malformed or missing required input."""
    pass


class DependencyFailure(WorkflowError):
    """Persistence or notification collaborator failed."""

    def __init__(self, message: str, dependency: str = "unknown"):
        super().__init__(message)
        self.dependency = dependency
