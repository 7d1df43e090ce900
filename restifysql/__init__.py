"""
RestifySQL: the operation layer of a REST API over SqlAlchemy models.

Given a request (Query Options, an access context, a body), it translates the Query Options
into a safe, bounded SQL statement, enforces field-level visibility on both the read and the write paths,
executes the operation, and fills a result envelope for the response writer.

* QueryTranslator: Query Options -> SQL statement
* CrudHelper: write payload -> sanitized changes -> instance
* CrudOperations: list, count, read-one, read-one-shallow, delete-many, delete-one, create, update
"""

from .bag import ResourceModel, FieldKind
from .options import QueryOptions, PopulateDirective
from .access import Access, AccessContext, ExcludedMap, ResourceFilter
from .query import QueryTranslator, translate
from .crud import CrudHelper, CrudOperations, OperationRequest, Result
from .util import Reusable, QueryTranslatorSettingsDict, OperationSettingsDict
from . import handlers
from .exc import BaseRestifySqlException, InvalidQueryError, InvalidColumnError, InvalidRelationError
from .exc import OperationError, NotFoundError, StoreExecutionError
