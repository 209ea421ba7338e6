"""Exception hierarchy for the provisioning pipeline."""


class LabPlatformError(Exception):
    """Base class for all labplatform errors."""


class InvalidInputError(LabPlatformError):
    """Raised when caller-supplied input fails validation."""


class InvalidStateError(LabPlatformError):
    """Raised when an action is not valid for the entity's current status."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class NotFoundError(LabPlatformError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class PoolExhaustedError(LabPlatformError):
    """Raised when an IP pool has no free address left."""

    def __init__(self, pool_id: str):
        super().__init__(f"no available IP in pool {pool_id}")
        self.pool_id = pool_id


class ProvisioningStageError(LabPlatformError):
    """Raised when a provisioning stage fails.

    Carries the stage name and the captured diagnostic so the orchestrator
    can record both on the request.
    """

    def __init__(self, stage: str, diagnostic: str):
        super().__init__(f"{stage} failed: {diagnostic}")
        self.stage = stage
        self.diagnostic = diagnostic


class ConfigStoreError(LabPlatformError):
    """Raised when a git operation against the config store fails."""
