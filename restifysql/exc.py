class BaseRestifySqlException(Exception):
    pass


class InvalidQueryError(BaseRestifySqlException):
    """ Invalid input provided by the User """

    status_code = 400

    def __init__(self, err: str):
        super(InvalidQueryError, self).__init__('Query object error: {err}'.format(err=err))


class InvalidColumnError(InvalidQueryError):
    """ Query or body mentioned an invalid field name """

    def __init__(self, model: str, column_name: str, where: str):
        self.model = model
        self.column_name = column_name
        self.where = where

        # Skip InvalidQueryError.__init__(): it would prefix the message
        BaseRestifySqlException.__init__(
            self,
            'Invalid column "{column_name}" for "{model}" specified in {where}'.format(
                column_name=column_name,
                model=model,
                where=where)
        )


class InvalidRelationError(InvalidColumnError):
    """ Query mentioned an invalid relationship name """

    def __init__(self, model: str, column_name: str, where: str):
        self.model = model
        self.column_name = column_name
        self.where = where

        BaseRestifySqlException.__init__(
            self,
            'Invalid relation "{column_name}" for "{model}" specified in {where}'.format(
                column_name=column_name,
                model=model,
                where=where)
        )


class OperationError(BaseRestifySqlException):
    """ An operation has failed; `status_code` tells the response writer how """

    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super(OperationError, self).__init__(message)
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(OperationError):
    """ Identity lookup (or an atomic mutation) has found nothing """

    status_code = 404

    def __init__(self, message: str = 'Not Found'):
        super(NotFoundError, self).__init__(message)


class StoreExecutionError(OperationError):
    """ The store has failed to execute a query

        The message of the original error is passed through.
        The original error is available as `.original`, and is chained as `__cause__`.
    """

    status_code = 400

    def __init__(self, original: BaseException):
        self.original = original
        super(StoreExecutionError, self).__init__(str(original))
