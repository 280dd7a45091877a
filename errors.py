class InputValidationError(ValueError):
    """Rejected input; raised before anything is mutated."""


class NotFoundError(ValueError):
    pass


class ProjectionBoundError(ValueError):
    """A projection needed more steps than the configured cap allows."""


class NotificationPermissionDenied(RuntimeError):
    pass


class PersistenceFailure(RuntimeError):
    pass
