"""
CRUD operations for one model: list, count, read-one, read-one-shallow,
delete-many, delete-one, create, update.

Every operation receives an OperationRequest, performs one round trip to the database
for its primary action, and fills the request's Result envelope.
Errors are never raised: they're handed to the `on_error` handler, and the envelope is returned.

```python
from restifysql import CrudOperations, ExcludedMap, OperationRequest, AccessContext, Access

excluded_map = ExcludedMap().add('Customer', private=('credit_card',), protected=('email',))
customers = CrudOperations(Customer, excluded_map, total_count_header=True, max_items=100)

async with async_session() as ssn:
    result = await customers.get_items(OperationRequest(
        ssn,
        AccessContext(Access.PUBLIC),
        dict(filter={'name': {'$prefix': 'A'}}, sort='-name', limit=10),
    ))
    result.status_code  #-> 200
    result.result  #-> [{'_id': ..., 'name': 'Alice', ...}, ...]
    result.total_count  #-> 42
```
"""

import logging
from typing import Any, Callable, Optional

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from ..access import AccessContext, ExcludedMap, ResourceFilter
from ..bag import ResourceModel
from ..exc import InvalidQueryError, OperationError, NotFoundError, StoreExecutionError
from ..options import QueryOptions
from ..query import QueryTranslator
from ..util import Reusable, maybe_await
from .crudhelper import CrudHelper
from .request import OperationRequest, Result

logger = logging.getLogger(__name__)


#: Errors reported by the database, by the query, or by model validators: 400
STORE_ERRORS = (SQLAlchemyError, InvalidQueryError, ValueError)

#: All errors that are handed over to the error handler
HANDLED_ERRORS = (OperationError,) + STORE_ERRORS


def default_context_filter(model: type, access_context: AccessContext):
    """ The default scoped view: every row is accessible """
    return select(model)


def default_on_error(err: OperationError, request: OperationRequest):
    """ The default error handler: record the error on the result envelope """
    request.result.status_code = err.status_code
    request.result.error = {'name': err.__class__.__name__, 'message': str(err)}
    if err.status_code >= 500:
        logger.error('%r failed with %d: %s', request, err.status_code, err, exc_info=err)
    else:
        logger.debug('%r failed with %d: %s', request, err.status_code, err)


class CrudOperations:
    """ CRUD operations for a model

        This object is supposed to be initialized only once;
        don't do it for every request!
    """

    # The class to use for getting structural data from a model
    _RESOURCE_MODEL_CLS = ResourceModel
    # The class to use for the write path
    _CRUD_HELPER_CLS = CrudHelper
    # The class to use for queries
    _TRANSLATOR_CLS = QueryTranslator

    def __init__(self, model: type,
                 excluded_map: Optional[ExcludedMap] = None,
                 resource_filter: Optional[ResourceFilter] = None,
                 context_filter: Optional[Callable] = None,
                 on_error: Optional[Callable] = None,
                 lean: bool = True,
                 read_preference: str = 'primary',
                 total_count_header: bool = False,
                 find_one_and_update: bool = True,
                 find_one_and_remove: bool = True,
                 autocommit: bool = True,
                 **handler_settings):
        """ Init CRUD operations

            Note: use `**OperationSettingsDict()` to help you with the argument names and their docs!

            :param model: The model to work with
            :param excluded_map: The map of fields excluded for every access level
            :param handler_settings: Settings for the QueryTranslator
            :raises KeyError: Invalid settings provided
        """
        self.model = model
        self.resource = self._RESOURCE_MODEL_CLS.for_model(model)
        self.excluded_map = excluded_map if excluded_map is not None else ExcludedMap()
        self.resource_filter = resource_filter or ResourceFilter(model)
        self.crudhelper = self._CRUD_HELPER_CLS(model, self.resource_filter)

        # Collaborators
        self.context_filter = context_filter or default_context_filter
        self.on_error = on_error or default_on_error

        # Settings
        self.lean = lean
        self.total_count_header = total_count_header
        self.find_one_and_update = find_one_and_update
        self.find_one_and_remove = find_one_and_remove
        self.autocommit = autocommit

        # Translator
        if handler_settings.get('default_read_preference') is None:
            handler_settings['default_read_preference'] = read_preference
        self.reusable_translator = Reusable(self._TRANSLATOR_CLS(model, handler_settings))  # type: QueryTranslator

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self.resource.model_name)

    # region Read

    async def get_items(self, request: OperationRequest) -> Result:
        """ List: the matching documents, or the distinct values of a field """
        logger.debug('%r.get_items(%r)', self, request)
        try:
            qo = QueryOptions.from_dict(request.query_options)
            if self._is_distinct_excluded(request, qo):
                return self._distinct_excluded(request)

            translator = self._query(request, qo)
            base = await self._scope(request)
            ssn = request.session

            if translator.is_distinct:
                result = list((await ssn.scalars(translator.end_distinct(base))).all())
            else:
                instances = (await ssn.scalars(translator.end(base))).all()
                result = self._output_list(translator, instances)

            if self.total_count_header:
                request.result.total_count = await ssn.scalar(translator.end_total_count(base))
        except HANDLED_ERRORS as e:
            return await self._fail(request, e)

        return self._succeed(request, 200, result)

    async def get_count(self, request: OperationRequest) -> Result:
        """ Count: the number of matching documents """
        logger.debug('%r.get_count(%r)', self, request)
        try:
            translator = self._query(request)
            base = await self._scope(request)
            count = await request.session.scalar(translator.end_count(base))
        except HANDLED_ERRORS as e:
            return await self._fail(request, e)

        return self._succeed(request, 200, {'count': count})

    async def get_item(self, request: OperationRequest) -> Result:
        """ Read-one: a document by its identity """
        logger.debug('%r.get_item(%r)', self, request)
        try:
            qo = QueryOptions.from_dict(request.query_options)
            if self._is_distinct_excluded(request, qo):
                return self._distinct_excluded(request)

            translator = self._query(request, qo)
            instance = await self._find_one(request, translator)
            result = self._output_one(translator, instance)
        except HANDLED_ERRORS as e:
            return await self._fail(request, e)

        return self._succeed(request, 200, result)

    async def get_shallow(self, request: OperationRequest) -> Result:
        """ Read-one-shallow: a document by its identity, with nested objects replaced with `True` """
        logger.debug('%r.get_shallow(%r)', self, request)
        try:
            qo = QueryOptions.from_dict(request.query_options)
            if self._is_distinct_excluded(request, qo):
                return self._distinct_excluded(request)

            translator = self._query(request, qo)
            instance = await self._find_one(request, translator)
            result = self.shallow(translator.pluck_instance(instance))
        except HANDLED_ERRORS as e:
            return await self._fail(request, e)

        return self._succeed(request, 200, result)

    def shallow(self, doc: dict) -> dict:
        """ Replace every nested object and array with a `True`

            The identity is never replaced.
            A `None` is not an object: an empty reference or an empty embedded document stays `None`,
            so the client can tell an empty field from a filled one.
        """
        return {
            name: True if name != self.resource.identity and isinstance(value, (dict, list, tuple)) else value
            for name, value in doc.items()
        }

    # endregion

    # region Delete

    async def delete_items(self, request: OperationRequest) -> Result:
        """ Delete-many: delete the matching documents """
        logger.debug('%r.delete_items(%r)', self, request)
        ssn = request.session
        try:
            translator = self._query(request)
            base = await self._scope(request)
            await ssn.execute(translator.end_remove(base))
            await self._commit(ssn)
        except HANDLED_ERRORS as e:
            await ssn.rollback()
            return await self._fail(request, e)

        return self._succeed(request, 204, None)

    async def delete_item(self, request: OperationRequest) -> Result:
        """ Delete-one: delete a document by its identity

            With `find_one_and_remove`, the document is looked up in the scoped view and removed;
            otherwise, the document loaded onto the envelope by an existence check is removed.
        """
        logger.debug('%r.delete_item(%r)', self, request)
        ssn = request.session
        try:
            if self.find_one_and_remove:
                instance = await self._find_one_for_update(request)
            else:
                instance = self._loaded_document(request)

            await ssn.delete(instance)
            await self._commit(ssn)
        except HANDLED_ERRORS as e:
            await ssn.rollback()
            return await self._fail(request, e)

        return self._succeed(request, 204, None)

    # endregion

    # region Write

    async def create_object(self, request: OperationRequest) -> Result:
        """ Create: a new document from the submitted body """
        logger.debug('%r.create_object(%r)', self, request)
        ssn = request.session
        try:
            translator = self._query(request)
            changes = self._sanitize(request, translator)

            instance = await ssn.run_sync(self.crudhelper.create_instance, changes)
            await ssn.flush()
            identity = inspect(instance).identity[0]
            await self._commit(ssn)

            instance = await self._reload(ssn, translator, identity)
            result = self._output_one(translator, instance)
        except HANDLED_ERRORS as e:
            await ssn.rollback()
            return await self._fail(request, e)

        return self._succeed(request, 201, result)

    async def modify_object(self, request: OperationRequest) -> Result:
        """ Update: a partial update of a document by its identity

            With `find_one_and_update`, the document is looked up in the scoped view (and locked);
            otherwise, the document loaded onto the envelope by an existence check is updated.
            An update that has nothing to change is a no-op.
        """
        logger.debug('%r.modify_object(%r)', self, request)
        ssn = request.session
        try:
            translator = self._query(request)
            changes = self._sanitize(request, translator)

            if self.find_one_and_update:
                instance = await self._find_one_for_update(request)
            else:
                instance = self._loaded_document(request)

            identity = inspect(instance).identity[0]
            if changes:
                await ssn.run_sync(self.crudhelper.update_instance, instance, changes)
                await self._commit(ssn)
            else:
                logger.debug('%r: nothing to update', request)

            instance = await self._reload(ssn, translator, identity)
            result = self._output_one(translator, instance)
        except HANDLED_ERRORS as e:
            await ssn.rollback()
            return await self._fail(request, e)

        return self._succeed(request, 200, result)

    # endregion

    # region Internals

    def _get_excluded_map(self, request: OperationRequest) -> ExcludedMap:
        """ The caller's own map, or the configured one """
        if request.access_context.excluded_map is not None:
            return request.access_context.excluded_map
        return self.excluded_map

    def _is_distinct_excluded(self, request: OperationRequest, qo: QueryOptions) -> bool:
        """ Does the caller ask for the distinct values of a field they can't see? """
        return qo.distinct is not None and self.resource_filter.is_excluded(
            qo.distinct,
            request.access_context.level,
            self._get_excluded_map(request),
        )

    def _distinct_excluded(self, request: OperationRequest) -> Result:
        """ Pretend there's nothing: the existence of a field can't be probed """
        logger.debug('%r: distinct field is excluded', request)
        return self._succeed(request, 200, [])

    def _query(self, request: OperationRequest, qo: Optional[QueryOptions] = None) -> QueryTranslator:
        """ Make a translator with the request's Query Options """
        return self.reusable_translator.query(
            qo if qo is not None else request.query_options,
            request.access_context.level,
            self._get_excluded_map(request),
        )

    async def _scope(self, request: OperationRequest):
        """ Get the scoped view: a select() of the rows the caller can reach """
        return await maybe_await(self.context_filter(self.model, request.access_context))

    def _sanitize(self, request: OperationRequest, translator: QueryTranslator) -> dict:
        return self.crudhelper.sanitize(
            request.body,
            request.access_context.level,
            self._get_excluded_map(request),
            translator.query_options.populate,
        )

    async def _find_one(self, request: OperationRequest, translator: QueryTranslator):
        """ Load a document by its identity, with the Query Options applied

            :raises NotFoundError
        """
        identity = self.resource.coerce_identity(request.id)
        base = await self._scope(request)
        stmt = translator.end(base.where(self.resource.identity_column == identity))
        instance = (await request.session.scalars(stmt)).first()
        if instance is None:
            raise NotFoundError()
        return instance

    async def _find_one_for_update(self, request: OperationRequest):
        """ Load a document by its identity from the scoped view, and lock it

            :raises NotFoundError
        """
        identity = self.resource.coerce_identity(request.id)
        base = await self._scope(request)
        stmt = base.where(self.resource.identity_column == identity) \
            .with_for_update() \
            .execution_options(populate_existing=True)
        instance = (await request.session.scalars(stmt)).first()
        if instance is None:
            raise NotFoundError()
        return instance

    def _loaded_document(self, request: OperationRequest):
        """ Get the document loaded by an existence check

            :raises NotFoundError
        """
        if request.result.document is None:
            raise NotFoundError()
        return request.result.document

    async def _reload(self, ssn, translator: QueryTranslator, identity: Any):
        """ Load a saved instance again: with the projection and the population """
        stmt = translator.end_populate(select(self.model).where(self.resource.identity_column == identity)) \
            .execution_options(populate_existing=True)
        return (await ssn.scalars(stmt)).one()

    async def _commit(self, ssn):
        if self.autocommit:
            await ssn.commit()
        else:
            await ssn.flush()

    def _output_list(self, translator: QueryTranslator, instances) -> list:
        if not self.lean:
            return list(instances)
        return [translator.pluck_instance(instance) for instance in instances]

    def _output_one(self, translator: QueryTranslator, instance):
        if not self.lean:
            return instance
        return translator.pluck_instance(instance)

    def _succeed(self, request: OperationRequest, status_code: int, result: Any) -> Result:
        request.result.status_code = status_code
        request.result.result = result
        return request.result

    async def _fail(self, request: OperationRequest, e: Exception) -> Result:
        """ Hand an error over to the error handler """
        if isinstance(e, OperationError):
            err = e
        else:
            err = StoreExecutionError(e)
            err.__cause__ = e

        request.result.status_code = err.status_code
        request.result.result = None
        await maybe_await(self.on_error(err, request))
        return request.result

    # endregion
