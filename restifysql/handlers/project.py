"""
### Select

Projection corresponds to the `SELECT` part of an SQL query.

The `select` option lets you list the fields that you want to have in the data you get from the API endpoint.
You do this by either listing the fields that you need (*include mode*), or listing the fields that you
*do not* need (*exclude mode*).

#### Syntax

* String syntax: field names, separated by whitespace or commas; a `-` in front excludes a field.

    ```javascript
    { select: 'name email' }  // include mode
    { select: '-address,-email' }  // exclude mode
    ```

* Array syntax: the same, as an array

    ```javascript
    { select: ['name', 'email'] }
    ```

* Object syntax: field names mapped to either a `1` (include) or a `0` (exclude).

    ```javascript
    { select: { name: 1, email: 1 } }
    { select: { address: 0 } }
    ```

You can't intermix the two modes. The only exception is the identity field:
it's always included, but can be excluded in include mode: `{ select: { name: 1, _id: 0 } }`.

References are not loaded by `select`: use `populate` for that.
Reference names given to `select` are ignored.

Fields that the caller is not allowed to see are never loaded, whatever the projection is.
"""

from sqlalchemy import inspect
from sqlalchemy.orm import load_only, defer

from .base import QueryHandlerBase
from ..access import remove_paths
from ..exc import InvalidQueryError, InvalidColumnError


class ProjectHandler(QueryHandlerBase):
    """ Projection: chooses which fields to load

        Syntax in Python:

        * None: use default (include all)
        * { a: 1, b: 1 } - include only the given fields; exclude all the rest
        * { a: 0, b: 0 } - exclude the given fields; include all the rest
        * [ a, b, c ] - include only the given fields
        * 'a b', 'a,b' - include only the given fields
        * '-a -b' - exclude the given fields

        Other useful methods:
        * get_full_projection() will compile a full projection: every column of a model,
            mapped to 1 or 0, depending on whether the user wanted it.
        * __contains__() will test whether a column was requested by this projection
    """

    query_options_field_name = 'select'

    #: Inclusion mode: only include the listed columns
    MODE_INCLUDE = 1
    #: Exclusion mode: exclude the given columns; include everything else
    MODE_EXCLUDE = 0

    def __init__(self, model, resource, default_exclude=None, force_exclude=None):
        """ Init projection

        :param model: Sqlalchemy model to work with
        :param resource: Resource model
        :param default_exclude: A list of column names that are excluded in exclusion mode.
            You can only get these fields if you request them explicitly.
        :param force_exclude: A list of column names to exclude from the output always
        """
        super(ProjectHandler, self).__init__(model, resource)

        # Settings
        self.default_exclude = frozenset(default_exclude or ())
        self.force_exclude = frozenset(force_exclude or ())
        invalid = (self.default_exclude | self.force_exclude) - self.resource.columns.names
        if invalid:
            raise ValueError('Invalid column names given to {}: {!r}'
                             .format(self.__class__.__name__, sorted(invalid)))

        #: Columns that can't be deferred: they're loaded even when excluded
        self.always_loaded = frozenset(filter(None, (self.resource.identity, self.resource.version)))

        # On input
        self.mode = None
        self._projection = None
        #: Loaded, but not plucked
        self.quietly_included = set()
        #: Excluded by access: never plucked
        self.excluded = frozenset()
        #: Excluded by access: dot-notation paths into embedded documents
        self.excluded_paths = frozenset()

    def __copy__(self):
        obj = super(ProjectHandler, self).__copy__()
        obj._projection = obj._projection.copy() if obj._projection is not None else None
        obj.quietly_included = obj.quietly_included.copy()
        return obj

    def _get_supported_bags(self):
        return self.resource.columns

    def input(self, projection, excluded=frozenset()):
        """ Create a projection

            :type projection: None | str | Sequence | dict
            :param excluded: Fields excluded by the access level of the caller
            :raises InvalidQueryError: invalid input
        """
        super(ProjectHandler, self).input(projection)

        self.mode, self._projection, hidden = self._input_process(projection)

        # default_exclude: only applies to exclusion mode
        if self.mode == self.MODE_EXCLUDE:
            for name in self.default_exclude:
                self._projection.setdefault(name, 0)

        # Excluded fields
        self.excluded = frozenset(name for name in excluded if '.' not in name) | self.force_exclude | hidden
        self.excluded_paths = frozenset(name for name in excluded if '.' in name)
        self._exclude_columns(self.excluded & self.resource.columns.names)

        return self

    def _input_process(self, projection):
        """ input(): receive, validate, preprocess

            :return: (mode, projection, hidden names)
        """
        # Empty projection: include all
        if not projection:
            return self.MODE_EXCLUDE, {}, frozenset()

        # String syntax
        if isinstance(projection, str):
            projection = projection.replace(',', ' ').split()

        # Array syntax
        if isinstance(projection, (list, tuple)):
            if not all(isinstance(name, str) for name in projection):
                raise InvalidQueryError('Select: array must only contain field names')
            projection = dict(
                (name[1:], 0) if name.startswith('-') else
                (name[1:], 1) if name.startswith('+') else
                (name, 1)
                for name in projection
            )

        # Dict syntax
        if not isinstance(projection, dict):
            raise InvalidQueryError('Select must be one of: null, string, array, object; '
                                    '{type} provided'.format(type=type(projection)))
        if not all(v in (0, 1) for v in projection.values()):
            raise InvalidQueryError('Select: values must be either 1 or 0')
        projection = {name: int(v) for name, v in projection.items()}

        # References are handled by `populate`
        for name in list(projection):
            if name in self.resource.relations:
                projection.pop(name)

        # Validate keys
        invalid = set(projection) - self.resource.columns.names
        if invalid:
            raise InvalidColumnError(self.resource.model_name, sorted(invalid)[0], self.query_options_field_name)

        # Validate values
        unique_values = set(projection.values())
        if not projection or unique_values == {0}:
            return self.MODE_EXCLUDE, projection, frozenset()
        if unique_values == {1}:
            # The identity is included, unless excluded explicitly
            projection.setdefault(self.resource.identity, 1)
            return self.MODE_INCLUDE, projection, frozenset()

        # Mixed mode: only the identity field can be excluded in inclusion mode
        excluded = {name for name, v in projection.items() if v == 0}
        if excluded == {self.resource.identity}:
            projection.pop(self.resource.identity)
            return self.MODE_INCLUDE, projection, frozenset(excluded)

        raise InvalidQueryError('Select values shall be all 0s or all 1s; '
                                'only the identity field can be excluded in inclusion mode')

    def _exclude_columns(self, names):
        """ Exclude columns from the projection, whatever the mode is """
        for name in names:
            if self.mode == self.MODE_INCLUDE:
                self._projection.pop(name, None)
            else:
                self._projection[name] = 0

    def merge_quietly(self, names):
        """ Make sure the columns are loaded, but don't let them into the output """
        for name in names:
            if name in self:
                continue
            self.quietly_included.add(name)
            if self.mode == self.MODE_INCLUDE:
                self._projection[name] = 1
            else:
                self._projection.pop(name)
        return self

    def compile_columns(self):
        """ Get the list of columns to be loaded """
        return [column
                for name, column in self.resource.columns
                if name in self or name in self.always_loaded]

    def compile_options(self):
        """ Get the list of options for a Select: load_only() or defer() """
        if self.mode == self.MODE_INCLUDE:
            return [load_only(*self.compile_columns())]

        return [defer(self.resource.columns[name])
                for name, include in self._projection.items()
                if not include and name not in self.always_loaded]

    def alter_query(self, stmt):
        options = self.compile_options()
        return stmt.options(*options) if options else stmt

    @property
    def projection(self):
        """ Get the current projection as a dict """
        return {name: include
                for name, include in self._projection.items()
                if name not in self.quietly_included}

    def get_full_projection(self):
        """ Generate a full projection: every column mapped to 1 or 0

        :rtype: dict
        """
        return {name: int(name in self)
                for name in self.resource.columns.names}

    def __contains__(self, name):
        """ Test whether a column name is included into projection """
        if self.mode == self.MODE_INCLUDE:
            return name in self._projection
        else:
            return name not in self._projection

    def pluck_instance(self, instance):
        """ Pluck an sqlalchemy instance and make it into a dict

            Only the fields requested by the user get included; unloaded fields are skipped:
            getting them would trigger lazy loading.

            :param instance: object
            :rtype: dict
        """
        unloaded = inspect(instance).unloaded
        dct = {name: getattr(instance, name)
               for name, include in self.get_full_projection().items()
               if include
               and name not in unloaded
               and name not in self.quietly_included
               and name not in self.excluded}
        if self.excluded_paths:
            dct = remove_paths(dct, self.excluded_paths)
        return dct
