"""Core exception hierarchy for stagerun.

All stagerun exceptions inherit from StageRunError so callers (the CLI in
particular) can catch a single base class.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class StageRunError(Exception):
    """Base exception for all stagerun errors.

    Catch this to handle every failure raised by the runner, the scheduler
    or the pipeline loader.
    """

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(StageRunError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("environment", "unknown reference ${env.FOO}")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(StageRunError):
    """Raised when data validation fails.

    Examples
    --------
    Example usage::

        raise ValidationError("VERBOSITY", "must be one of 0, 1, 2", value="7")
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        """Initialize validation error.

        Args
        ----
            field: Name of the field that failed validation
            constraint: Description of the validation constraint
            value: The invalid value (optional)
        """
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class PipelineDefinitionError(StageRunError):
    """Raised when a pipeline YAML document cannot be loaded or is malformed."""

    pass


# ============================================================================
# Resource Errors
# ============================================================================


class ResourceNotFoundError(StageRunError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("build", "nimbus-eth2#12", ["10", "11"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        """Initialize resource not found error.

        Args
        ----
            resource_type: Type of resource (e.g., "pipeline", "build", "agent")
            resource_id: Identifier of the missing resource
            available: List of available resources (optional)
        """
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


class AgentSelectionError(StageRunError):
    """Raised when no configured agent satisfies a label expression."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot select agent for label '{expression}': {reason}")


class RunStoreError(StageRunError):
    """Raised when a run record cannot be persisted or read back."""

    pass


# ============================================================================
# Execution Errors
# ============================================================================


class StepError(StageRunError):
    """Base exception for a failed step inside a stage."""

    pass


class CommandFailedError(StepError):
    """Raised when a shell command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(f"Command '{command}' exited with status {exit_code}")


class UncommittedChangesError(StepError):
    """Raised when the build left modifications in the working tree."""

    def __init__(self, changed: list[str]) -> None:
        self.changed = changed
        preview = ", ".join(changed[:5])
        if len(changed) > 5:
            preview += f" ... and {len(changed) - 5} more"
        super().__init__(f"Working tree has uncommitted changes: {preview}")


class ArtifactError(StepError):
    """Raised when artifact archiving fails (e.g. nothing matched)."""

    pass


class StepTimeoutError(StepError):
    """Raised when a single step exceeds its own timeout."""

    def __init__(self, step: str, timeout: float) -> None:
        self.step = step
        self.timeout = timeout
        super().__init__(f"Step '{step}' timed out after {timeout:g}s")


class StageTimeoutError(StageRunError):
    """Raised when a stage exceeds its timeout."""

    def __init__(self, stage: str, timeout: float) -> None:
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Stage '{stage}' timed out after {timeout:g}s")


class PipelineTimeoutError(StageRunError):
    """Raised when a whole run exceeds its global timeout."""

    def __init__(self, job_name: str, timeout: float) -> None:
        self.job_name = job_name
        self.timeout = timeout
        super().__init__(f"Run of '{job_name}' timed out after {timeout:g}s")


__all__ = [
    # Base
    "StageRunError",
    # Configuration & Validation
    "ConfigurationError",
    "ValidationError",
    "PipelineDefinitionError",
    # Resources
    "ResourceNotFoundError",
    "AgentSelectionError",
    "RunStoreError",
    # Execution
    "StepError",
    "CommandFailedError",
    "UncommittedChangesError",
    "ArtifactError",
    "StepTimeoutError",
    "StageTimeoutError",
    "PipelineTimeoutError",
]
