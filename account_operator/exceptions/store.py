from account_operator.exceptions.base import BaseOperatorError


class StoreException(BaseOperatorError):
    pass


class ObjectNotFoundError(StoreException):
    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class ObjectAlreadyExistsError(StoreException):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} already exists")


class ConflictError(StoreException):
    """Raised when a write carries a resource version that is no longer current."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} was modified: Conflict")


class ManifestError(StoreException):
    pass
