from account_operator.exceptions.base import BaseOperatorException


class InvalidStateTransitionError(BaseOperatorException):
    def __init__(self, kind: str, current: str, desired: str):
        self.kind = kind
        self.current = current
        self.desired = desired
        super().__init__(
            f"{kind} cannot move from state {current or '<none>'} to {desired}"
        )


class ClaimValidationError(BaseOperatorException):
    pass


class ManagerAlreadyStartedException(BaseOperatorException):
    pass
