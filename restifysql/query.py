from copy import copy

from sqlalchemy import select, delete

from .access import Access
from .bag import ResourceModel
from . import handlers
from .options import QueryOptions
from .util import TranslatorSettingsHandler


class QueryTranslator:
    """ Translates Query Options into SQL statements

        The translator is pure: it builds statements, but never executes them.

        Example:

            translator = QueryTranslator(Customer, dict(max_items=100))
            stmt = translator.query(dict(filter={'age': {'$gte': 18}}, sort='-age')).end()
            customers = (await ssn.scalars(stmt)).all()
            docs = [translator.pluck_instance(c) for c in customers]

        A translator can only be used for one query. Wrap it with Reusable() to use it many times.
    """

    # The class to use for getting structural data from a model
    _RESOURCE_MODEL_CLS = ResourceModel

    def __init__(self, model, handler_settings=None):
        """ Init a translator

        :param model: SqlAlchemy model to make queries for.
        :type model: sqlalchemy.orm.DeclarativeBase
        :param handler_settings: Settings for Query Options handlers.
            These are just plain kwargs names for every handler object's __init__ method.
            Note that you don't have to specify which object receives which kwarg:
            the `TranslatorSettingsHandler` object does that automatically.

            See QueryTranslatorSettingsDict for the list of all settings.
        :raises KeyError: Invalid settings provided
        """
        self._model = model
        self._resource = self._RESOURCE_MODEL_CLS.for_model(model)
        self._handler_settings = TranslatorSettingsHandler(dict(handler_settings or {}))

        # Init handlers
        self._init_query_options_handlers()

        # On input
        #: Access level of the caller
        self.access = Access.PUBLIC
        #: Map of excluded fields
        self.excluded_map = None
        #: Fields of this model excluded for the caller
        self.excluded = frozenset()
        #: The Query Options
        self.query_options = None

    def __copy__(self):
        """ QueryTranslator can be reused: wrap it with Reusable() which performs the automatic copy() """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)

        # Copy Query Options handlers
        for name in self.HANDLER_ATTR_NAMES:
            setattr(result, name, copy(getattr(result, name)))

        return result

    @property
    def model(self):
        return self._model

    @property
    def resource(self):
        """ :rtype: ResourceModel """
        return self._resource

    def query(self, query_options=None, access=Access.PUBLIC, excluded_map=None):
        """ Receive Query Options

        :param query_options: Query Options: a dict, or a QueryOptions object
        :type query_options: dict | QueryOptions | None
        :param access: Access level of the caller
        :param excluded_map: The map of fields excluded for every access level
        :type excluded_map: restifysql.access.ExcludedMap | None
        :raises InvalidQueryError: unknown Query Options keys; syntax error for any of the options
        :raises InvalidColumnError: Invalid column name provided in the input
        :raises InvalidRelationError: Invalid relationship name provided in the input
        :rtype: QueryTranslator
        """
        qo = self.query_options = QueryOptions.from_dict(query_options)

        # Access
        self.access = access
        self.excluded_map = excluded_map
        self.excluded = excluded_map.get_excluded(self._resource.model_name, access) if excluded_map else frozenset()

        # Bind every handler with ourselves
        for handler_name, handler in self._handlers():
            handler.with_translator(self)

        # Process every option with its handler
        self.handler_filter.input(qo.filter)
        self.handler_project.input(qo.select, self.excluded)
        self.handler_populate.input(qo.populate, access, excluded_map)
        self.handler_sort.input(qo.sort)
        self.handler_limit.input(qo.skip, qo.limit)
        self.handler_distinct.input(qo.distinct)
        self.handler_read_preference.input(qo.read_preference)

        # Populated references need their foreign keys
        self.handler_project.merge_quietly(self.handler_populate.local_column_names)

        # Done
        return self

    @property
    def is_distinct(self):
        """ Does the query ask for distinct values of a field? """
        return self.handler_distinct.field is not None

    # region end*() methods

    def end(self, base=None):
        """ Get the statement that loads the list of matching instances

        :param base: The statement to start with: the scoped view.
            Default: select(model)
        :type base: sqlalchemy.sql.Select | None
        :rtype: sqlalchemy.sql.Select
        """
        return self._apply(base,
                           self.handler_filter,
                           self.handler_project,
                           self.handler_populate,
                           self.handler_sort,
                           self.handler_limit,
                           self.handler_read_preference)

    def end_distinct(self, base=None):
        """ Get the statement that loads the distinct values of a field

            The sorting is ignored: an ORDER BY is not compatible with SELECT DISTINCT of another column
        """
        return self._apply(base,
                           self.handler_filter,
                           self.handler_limit,
                           self.handler_distinct,
                           self.handler_read_preference)

    def end_count(self, base=None):
        """ Get the statement that counts the matching rows, within skip & limit

            `max_items` limits lists, not counts: only the user's own limit applies
        """
        stmt = self._apply(base, self.handler_filter)
        stmt = self.handler_limit.alter_query(stmt, capped=False)
        return self._apply(stmt,
                           self.handler_count,
                           self.handler_read_preference)

    def end_total_count(self, base=None):
        """ Get the statement that counts all the matching rows, ignoring skip & limit """
        return self._apply(base,
                           self.handler_filter,
                           self.handler_count,
                           self.handler_read_preference)

    def end_remove(self, base=None):
        """ Get the statement that deletes the matching rows

            The matching identities are selected with the filter, the sorting, skip & limit,
            and the rows are deleted by identity.

        :rtype: sqlalchemy.sql.Delete
        """
        identity_column = self._resource.identity_column
        identities = self._apply(base,
                                 self.handler_filter,
                                 self.handler_sort,
                                 self.handler_limit,
                                 ).with_only_columns(identity_column)
        return delete(self._model) \
            .where(identity_column.in_(identities)) \
            .execution_options(synchronize_session='fetch')

    def end_populate(self, base=None):
        """ Get the statement that loads instances with the projection & population, but with no filtering

            This is used to re-load an instance after it has been saved.
        """
        return self._apply(base,
                           self.handler_project,
                           self.handler_populate)

    def _apply(self, base, *handlers):
        stmt = select(self._model) if base is None else base
        for handler in handlers:
            stmt = handler.alter_query(stmt)
        return stmt

    # endregion

    def pluck_instance(self, instance):
        """ Pluck an sqlalchemy instance and make it into a dict

            This method should be used to prepare an object for JSON encoding.
            This makes sure that only the properties explicitly requested by the user get included
            into the result, and *not* the properties that your code may have loaded.

            :param instance: object
            :rtype: dict
        """
        if not isinstance(instance, self._model):
            raise ValueError('This QueryTranslator.pluck_instance() expects {}, but {} was given'
                             .format(self._model, type(instance)))
        dct = self.handler_project.pluck_instance(instance)
        return self.handler_populate.pluck_instance(instance, dct)

    def __repr__(self):
        return 'QueryTranslator({})'.format(self._resource.model_name)

    # region Query Options handlers

    # This section initializes every Query Options handler.
    # Doing it this way enables you to override the way they are initialized,
    # and use a custom class with custom settings.

    _QO_HANDLER_FILTER = handlers.FilterHandler
    _QO_HANDLER_PROJECT = handlers.ProjectHandler
    _QO_HANDLER_POPULATE = handlers.PopulateHandler
    _QO_HANDLER_SORT = handlers.SortHandler
    _QO_HANDLER_LIMIT = handlers.LimitHandler
    _QO_HANDLER_DISTINCT = handlers.DistinctHandler
    _QO_HANDLER_COUNT = handlers.CountHandler
    _QO_HANDLER_READ_PREFERENCE = handlers.ReadPreferenceHandler

    HANDLER_NAMES = ('filter',
                     'project',
                     'populate',
                     'sort',
                     'limit',
                     'distinct',
                     'count',
                     'read_preference')
    HANDLER_ATTR_NAMES = frozenset('handler_' + name
                                   for name in HANDLER_NAMES)

    # for IDE completion
    handler_filter = None  # type: handlers.FilterHandler
    handler_project = None  # type: handlers.ProjectHandler
    handler_populate = None  # type: handlers.PopulateHandler
    handler_sort = None  # type: handlers.SortHandler
    handler_limit = None  # type: handlers.LimitHandler
    handler_distinct = None  # type: handlers.DistinctHandler
    handler_count = None  # type: handlers.CountHandler
    handler_read_preference = None  # type: handlers.ReadPreferenceHandler

    def _handlers(self):
        """ Get the list of all (handler_name, handler) """
        return ((name, getattr(self, 'handler_' + name))
                for name in self.HANDLER_NAMES)

    def _init_query_options_handlers(self):
        """ Initialize every Query Options handler """
        for name in self.HANDLER_NAMES:
            handler_cls = getattr(self, '_QO_HANDLER_' + name.upper())
            setattr(self, 'handler_' + name,
                    self._init_handler(name, handler_cls))

        # Check settings
        self._handler_settings.raise_if_invalid_handler_settings(self)

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler, and load its settings """
        handler_settings = self._handler_settings.get_settings(handler_name, handler_cls)
        return handler_cls(self._model, self._resource, **handler_settings)

    # endregion


def translate(base, query_options, access=Access.PUBLIC, excluded_map=None, **handler_settings):
    """ Translate Query Options into a statement that loads the matching instances

    :param base: The statement to start with: a select() of a model, possibly with some criteria
    :type base: sqlalchemy.sql.Select
    :param query_options: Query Options
    :rtype: sqlalchemy.sql.Select
    """
    model = base.column_descriptions[0]['entity']
    return QueryTranslator(model, handler_settings) \
        .query(query_options, access, excluded_map) \
        .end(base)
