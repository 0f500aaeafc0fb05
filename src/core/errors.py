# src/core/errors.py - v1
"""Error taxonomy shared by every stagegate component.

Each error carries a stable ``error_type`` string. The stage runner copies
it into the persisted ActionResult so failures survive restarts and can be
reported without the original exception object.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all orchestration errors."""

    error_type = "PipelineError"


class ConfigurationError(PipelineError):
    """Malformed pipeline, stage or action declaration, or inconsistent settings.

    Raised before any side effect takes place.
    """

    error_type = "ConfigurationError"


class BuildFailed(PipelineError):
    """A build command exited non-zero, timed out, or produced no artifact."""

    error_type = "BuildFailed"

    def __init__(self, message: str, diagnostics: str = "", exit_code: int | None = None):
        self.diagnostics = diagnostics
        self.exit_code = exit_code
        super().__init__(message)


class DeployFailed(PipelineError):
    """The deployment target rejected the template; prior state is intact."""

    error_type = "DeployFailed"

    def __init__(self, environment: str, message: str):
        self.environment = environment
        super().__init__(f"Deployment to '{environment}' failed: {message}")


class ApprovalRejected(PipelineError):
    """A reviewer rejected the approval request."""

    error_type = "ApprovalRejected"


class ApprovalExpired(PipelineError):
    """No decision was recorded before the approval timeout."""

    error_type = "ApprovalExpired"


class DuplicateArtifact(PipelineError):
    """An artifact name was written twice within the same execution."""

    error_type = "DuplicateArtifact"

    def __init__(self, execution_id: str, name: str):
        self.execution_id = execution_id
        self.name = name
        super().__init__(f"Artifact '{name}' already written for execution {execution_id}")


class NotFound(PipelineError):
    """A requested record does not exist."""

    error_type = "NotFound"


class ArtifactNotFound(NotFound):
    def __init__(self, execution_id: str, name: str):
        self.execution_id = execution_id
        self.name = name
        super().__init__(f"Artifact '{name}' not found for execution {execution_id}")


class ExecutionNotFound(NotFound):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' not found")


class AlreadyDecided(PipelineError):
    """A decision was attempted on an approval request that is no longer pending."""

    error_type = "AlreadyDecided"

    def __init__(self, request_id: str, state: str):
        self.request_id = request_id
        self.state = state
        super().__init__(f"Approval request {request_id} is already {state}")


class PermissionDenied(PipelineError):
    """An action used a capability outside of its declared grants."""

    error_type = "PermissionDenied"

    def __init__(self, principal: str, verb: str, resource: str):
        self.principal = principal
        self.verb = verb
        self.resource = resource
        super().__init__(f"{principal} is not allowed to {verb} on {resource}")


class SourceFetchFailed(PipelineError):
    """The source snapshot for a commit could not be fetched."""

    error_type = "SourceFetchFailed"


class StaleStateError(PipelineError):
    """An execution record was modified concurrently by another writer."""

    error_type = "StaleStateError"
