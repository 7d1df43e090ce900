from typing import *

from .inspect import pluck_kwargs_from


class QueryTranslatorSettingsDict(dict):
    """ QueryTranslator settings container.

        Is used for nice autocompletion and documentation purposes only! :)

        The keyword settings in this object are just plain kwargs names
        for every handler object's __init__ method,
        which are fed to the handlers by TranslatorSettingsHandler.
    """

    def __init__(self,
                 # --- project
                 default_exclude: Iterable[str] = None,
                 force_exclude: Iterable[str] = None,
                 # --- filter
                 force_filter = None,
                 scalar_operators: Mapping[str, Callable] = None,
                 # --- limit
                 max_items: int = None,
                 # --- read_preference
                 default_read_preference: str = None,
                 ):
        """ `QueryTranslator` has a few settings that let you configure the way queries are made,
        and to fine-tune their security limitations.

        Example:
            ```python
            from restifysql import QueryTranslator, QueryTranslatorSettingsDict

            translator = QueryTranslator(models.Customer, QueryTranslatorSettingsDict(
                default_exclude=('address',),
                max_items=100,
            ))
            ```

        Args:
            default_exclude (list[str]): (for: project)
                A list of columns that are excluded from every exclusion-mode projection.
                The only way to load these columns would be to request them explicitly.
                Use this for columns that contain a lot of data.
            force_exclude (list[str]): (for: project)
                A list of columns that are never loaded, whatever the projection is.
            force_filter (dict | callable | sqlalchemy expression): (for: filter)
                A filter that is always applied: a criteria dict, an SQL expression,
                or a `callable(model)` that returns one of these.
            scalar_operators (dict[str, callable]): (for: filter)
                Additional operators: `{'$name': lambda column, value: expression}`.
            max_items (int): (for: limit)
                The maximum number of items that can be loaded with one list query.
                The user can never go any higher than that.
            default_read_preference (str): (for: read_preference)
                The read preference to use when the request has none.
        """
        super(QueryTranslatorSettingsDict, self).__init__()
        self.update({k: v
                     for k, v in locals().items()
                     if k not in {'__class__', 'self'}})

    def and_more(self, **settings):
        """ Copy the object and add more settings to it """
        return self.__class__(**{**self, **settings})

    @classmethod
    def pluck_from(cls, dict, skip=()):
        """ Initialize the class by plucking kwargs from a dictionary.

            Example: pluck QueryTranslatorSettingsDict from an OperationSettingsDict.
        """
        kwargs = pluck_kwargs_from(dict,
                                   for_func=cls.__init__,
                                   skip=skip
                                   )
        return cls(**kwargs)


class OperationSettingsDict(QueryTranslatorSettingsDict):
    """ CrudOperations + QueryTranslator settings container. """
    def __init__(self,
                 resource_filter = None,
                 context_filter: Callable = None,
                 on_error: Callable = None,
                 lean: bool = True,
                 read_preference: str = 'primary',
                 total_count_header: bool = False,
                 find_one_and_update: bool = True,
                 find_one_and_remove: bool = True,
                 autocommit: bool = True,

                 # The rest is QueryTranslator settings
                 **translator_settings
                 ):
        """ Settings for [CrudOperations](#crud-operations), which is an extension of the QueryTranslator settings.

        Args:
            resource_filter (ResourceFilter): The field-level access filter.
                The default one uses the `excluded_map`.
            context_filter (callable): `context_filter(model, access_context)` -> `Select`

                The scoped view: a statement that restricts the rows a caller can reach.
                May be a coroutine function. The default one is `select(model)`.
            on_error (callable): `on_error(err, request)`

                Is called for every error reported by an operation.
                May be a coroutine function. The default one records the error on the result envelope.
            lean (bool): Return plain dicts instead of model instances
            read_preference (str): The default read preference for reads
            total_count_header (bool): When listing items, also count the total number of matching records
                (ignoring skip & limit) and report it as `Result.total_count`
            find_one_and_update (bool): Update with a single atomic lookup-and-modify,
                instead of a read, then a write
            find_one_and_remove (bool): Delete with a single atomic statement,
                instead of a read, then a delete
            autocommit (bool): Commit after every write. When `False`, the session is only flushed,
                and committing is up to the caller.

            **translator_settings: more settings for `QueryTranslator` (as described above)
        """
        super(OperationSettingsDict, self).__init__(**translator_settings)
        self.update({k: v  # See the parent method
                     for k, v in locals().items()
                     if k not in {'__class__', 'self', 'translator_settings'}})
