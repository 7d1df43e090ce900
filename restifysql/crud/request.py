from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..access import AccessContext
from ..options import QueryOptions


class Result:
    """ The result envelope of one request

        Is populated by exactly one operation, and is consumed by the response writer.

        Attributes:
            result: a document, a list of documents, or a {count} object
            status_code: 200, 201, 204, 400, 404
            total_count: the number of matching documents, ignoring skip & limit. Only when requested.
            document: the document loaded by an existence check before an update or a delete
            error: {name, message} when the operation has failed
    """

    def __init__(self, document: Any = None):
        self.result = None
        self.status_code = None
        self.total_count = None
        self.document = document
        self.error = None

    @property
    def succeeded(self) -> bool:
        return self.status_code is not None and self.status_code < 400

    def __repr__(self):
        return '{}(status_code={!r}, result={!r})'.format(self.__class__.__name__, self.status_code, self.result)


class OperationRequest:
    """ Everything an operation needs to know about a request

        Attributes:
            session: The database session
            access_context: The caller
            query_options: Query Options: a dict parsed from the query string, or a QueryOptions object
            body: The submitted document, for writes
            id: The identity of the document, for single-document operations
            result: The result envelope
    """

    def __init__(self,
                 session: AsyncSession,
                 access_context: Optional[AccessContext] = None,
                 query_options: Union[QueryOptions, dict, None] = None,
                 body: Optional[dict] = None,
                 id: Any = None,
                 result: Optional[Result] = None):
        self.session = session
        self.access_context = access_context or AccessContext()
        self.query_options = query_options
        self.body = body
        self.id = id
        self.result = result if result is not None else Result()

    def __repr__(self):
        return '{}(access_context={!r}, id={!r})'.format(self.__class__.__name__, self.access_context, self.id)
