"""Domain error types."""


class DomainError(Exception):
    """Base domain error."""
    pass


class NotFoundError(DomainError):
    """Resource not found."""
    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with id {identifier} not found")


class ReadStateStorageError(DomainError):
    """The local read-state slot could not be read or written."""
    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"read-state slot {key}: {message}")


class ReadStateQuotaExceeded(ReadStateStorageError):
    """The read-state slot refused a write because its storage is full."""
    pass
