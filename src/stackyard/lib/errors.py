"""Custom exception hierarchy for Stackyard configuration and operations."""


class StackyardError(Exception):
    """Base exception for all Stackyard errors.

    All Stackyard-specific exceptions inherit from this class, enabling
    centralized exception handling in the HTTP and CLI layers.
    """

    pass


class ConfigError(StackyardError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(StackyardError):
    """Exception raised when a deployment request is malformed.

    Raised synchronously, before any side effect takes place.

    Attributes:
        field: The field that failed validation
        message: Description of the validation failure
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ValidationError.

        Args:
            field: Field that failed validation
            message: Description of what went wrong
        """
        self.field = field
        self.message = message
        super().__init__(f"Validation error in '{field}': {message}")


class ManifestError(StackyardError):
    """Exception raised when the manifest document cannot be read or is corrupt.

    Attributes:
        path: Path of the manifest document
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Initialize ManifestError with the document path and message."""
        self.path = path
        self.message = message
        super().__init__(f"Manifest error in {path}: {message}")


class AlreadyExistsError(ManifestError):
    """Exception raised when adding a service block whose key is already declared."""

    def __init__(self, path: str, name: str) -> None:
        """Create an error for a duplicate service key."""
        self.name = name
        super().__init__(path, f"service '{name}' already exists")


class NotFoundError(ManifestError):
    """Exception raised when a service block (or one of its fields) is absent."""

    def __init__(self, path: str, name: str, detail: str | None = None) -> None:
        """Create an error for a missing service key or field."""
        self.name = name
        message = f"service '{name}' not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(path, message)


class DeploymentError(StackyardError):
    """Exception raised when an external deployment collaborator fails.

    Attributes:
        operation: The operation that failed (fetch, build, publish, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Initialize DeploymentError with operation and message."""
        self.operation = operation
        self.message = message
        super().__init__(f"Deployment {operation} failed: {message}")


class FetchFailedError(DeploymentError):
    """Source retrieval failed (invalid URL, authentication, network)."""

    def __init__(self, message: str) -> None:
        """Create a fetch failure."""
        super().__init__(operation="fetch", message=message)


class BuildFailedError(DeploymentError):
    """Container image construction failed."""

    def __init__(self, message: str) -> None:
        """Create a build failure."""
        super().__init__(operation="build", message=message)


class PublishFailedError(DeploymentError):
    """Pushing the image to the registry failed."""

    def __init__(self, message: str) -> None:
        """Create a publish failure."""
        super().__init__(operation="publish", message=message)


class ReconcileFailedError(DeploymentError):
    """The orchestrator rejected the manifest document."""

    def __init__(self, message: str) -> None:
        """Create a reconcile failure."""
        super().__init__(operation="reconcile", message=message)


class DockerNotAvailableError(DeploymentError):
    """Error raised when the Docker daemon cannot be reached.

    Attributes:
        operation: The operation that needed the daemon
    """

    def __init__(self, operation: str, original_error: Exception | None = None) -> None:
        """Initialize DockerNotAvailableError.

        Args:
            operation: The operation that required Docker
            original_error: The underlying connection error, if any
        """
        message = (
            "Docker daemon is not available. "
            "Ensure Docker is running and the socket is accessible."
        )
        if original_error:
            message += f"\nOriginal error: {original_error}"
        super().__init__(operation=operation, message=message)


class CleanupWarning(StackyardError):
    """Non-fatal failure while removing a job workspace.

    Only ever logged; it never replaces the error that ended the job.
    """

    def __init__(self, path: str, message: str) -> None:
        """Create a cleanup warning for a workspace path."""
        self.path = path
        self.message = message
        super().__init__(f"Failed to clean up {path}: {message}")


class SubscriptionClosedError(StackyardError):
    """Raised when receiving from a closed, fully drained event subscription."""

    def __init__(self) -> None:
        """Create the closed-subscription error."""
        super().__init__("Event subscription is closed")


class ShutdownInProgressError(StackyardError):
    """Raised when a job is submitted after shutdown has started."""

    def __init__(self) -> None:
        """Create the shutdown error."""
        super().__init__("Control plane is shutting down; no new jobs accepted")
