class RepositoryException(Exception):
    """Base exception for all repository-related errors."""
    pass

class MappingError(RepositoryException):
    """Raised when an entity cannot be translated to or from its resource form."""

    MISSING_REQUIRED_FIELD = "missing-required-field"
    COERCION_FAILURE = "coercion-failure"

    def __init__(self, kind: str, field: str, direction: str, detail: str = ""):
        self.kind = kind
        self.field = field
        self.direction = direction
        message = f"{kind} on field '{field}' ({direction})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

class MissingIdentityError(RepositoryException):
    """Raised when an operation needs an entity identity and none is assigned."""
    def __init__(self, message: str = "Entity has no assigned identity."):
        super().__init__(message)

class IdentityAssignedError(RepositoryException):
    """Raised when create() is given an entity that already has an identity."""
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Entity already has identity '{identity}'; use update() instead.")

class NotFoundError(RepositoryException):
    """Raised when the backend no longer holds the targeted identity."""
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No resource with identity '{identity}'.")

class ReentrantOperationError(RepositoryException):
    """Raised when a changes listener awaits a mutation on the repository that is notifying it."""
    pass

class BackendException(RepositoryException):
    """Raised when a backend adapter cannot complete an I/O operation."""
    pass
