"""Exception types raised at the request and orchestration boundaries.

Request-level errors (input, auth, credits, missing project) are raised
before any stream opens and mapped to HTTP status codes by the API layer.
StagePatchError signals a stage collaborator that wrote outside its declared
fields; the orchestrator treats it like any other unexpected fault.
"""


class PipelineInputError(ValueError):
    """Required run inputs are missing or malformed (HTTP 400)."""


class AuthenticationRequired(Exception):
    """No caller identity could be resolved (HTTP 401)."""


class InsufficientCreditsError(Exception):
    """Caller balance does not cover the operation cost (HTTP 402)."""

    def __init__(self, required: int, balance: int) -> None:
        super().__init__(f"Insufficient credits: required {required}, balance {balance}")
        self.required = required
        self.balance = balance


class ProjectNotFoundError(LookupError):
    """Referenced project does not exist or is not visible to the caller (HTTP 404)."""


class StagePatchError(RuntimeError):
    """A stage returned a patch touching fields it does not own."""
