"""Error taxonomy shared across Rollwright components.

Every error carries a stable ``code`` used in rollout records, deployment
results and CLI output.
"""

from __future__ import annotations


class RollwrightError(RuntimeError):
    """Base class for all Rollwright errors."""

    code = "error"


class InvalidReference(RollwrightError):
    """The artifact reference does not match the image reference grammar."""

    code = "invalid_reference"


class RegistryUnreachable(RollwrightError):
    """The registry lookup could not complete within its retry budget."""

    code = "registry_unreachable"


class TagNotFound(RollwrightError):
    """The registry answered but the tag does not exist."""

    code = "tag_not_found"


class ConvergenceError(RollwrightError):
    """Provisioning failed.

    ``partial`` is True when some resources were created before the
    failure; the persisted ObservedInfraState then lists exactly those.
    """

    code = "convergence_error"

    def __init__(self, detail: str, *, partial: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.partial = partial


class ConvergenceInProgress(RollwrightError):
    code = "convergence_in_progress"


class RolloutInProgress(RollwrightError):
    code = "rollout_in_progress"


class PullFailure(RollwrightError):
    code = "pull_failure"


class HealthCheckTimeout(RollwrightError):
    code = "health_check_timeout"


class RollbackFailure(RollwrightError):
    """Rollback did not restore a serving version.  Operator action required."""

    code = "rollback_failure"


class UnknownTarget(RollwrightError):
    code = "unknown_target"


class RemoteExecutionError(RollwrightError):
    """A remote command could not be run or exceeded its deadline."""

    code = "remote_execution_error"


class DeploymentCancelled(RollwrightError):
    """An operator abort reached this operation."""

    code = "cancelled"
