class BaseOperatorException(Exception):
    pass


class BaseOperatorError(BaseOperatorException):
    pass
