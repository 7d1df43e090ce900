"""
### Sort

Sorting corresponds to the `ORDER BY` part of an SQL query.

```javascript
$.get('/api/customer?' + $.param({
    // sort by name, descending;
    // then sort by email, alphabetically
    sort: '-name email',
}))
```

#### Syntax

* String syntax: list of columns separated by whitespace or commas.
    A column is prefixed or suffixed with `-` for `DESC`, `+` for `ASC`. The default is `ASC`.

    ```javascript
    { sort: '-a b+ c-' }  // -> a DESC, b ASC, c DESC
    ```

* Array syntax: the same, as an array

    ```javascript
    { sort: [ 'a+', 'b-', '-c' ] }
    ```

* Object syntax: `{ a: -1 }`. Only one column is allowed: an object does not preserve the ordering of its keys.
"""

from collections import OrderedDict

from .base import QueryHandlerBase
from ..exc import InvalidQueryError


class SortHandler(QueryHandlerBase):
    """ Sorting

        * None: no sorting
        * OrderedDict({ a: +1, b: -1 })
        * [ 'a+', 'b-', '-c', 'd' ]  - array of strings. default direction = +1
        * 'a+ b- -c d'
        * dict({a: +1}) -- you can only use a dict with ONE COLUMN (because of its unstable order)
    """

    query_options_field_name = 'sort'

    def __init__(self, model, resource):
        super(SortHandler, self).__init__(model, resource)

        # On input
        #: OrderedDict() of a sort spec: {key: +1|-1}
        self.sort_spec = None

    def _get_supported_bags(self):
        return self.resource.columns

    def _input(self, spec):
        # Empty
        if not spec:
            spec = []

        # String syntax
        if isinstance(spec, str):
            spec = spec.replace(',', ' ').split()

        # List: convert "[+-]column[+-]" into an ordered dict
        if isinstance(spec, (list, tuple)):
            if not all(isinstance(v, str) and v.strip('+-') for v in spec):
                raise InvalidQueryError('{} array must only contain field names'.format(self.query_options_field_name))
            spec = OrderedDict(
                (v.strip('+-'), -1 if v.startswith('-') or v.endswith('-') else +1)
                for v in spec
            )

        # Dict
        if isinstance(spec, OrderedDict):
            pass  # nothing to do here
        elif isinstance(spec, dict):
            if len(spec) > 1:
                raise InvalidQueryError('{} is a plain object; can only have 1 column '
                                        'because of unstable ordering of object keys; '
                                        'use list syntax instead'
                                        .format(self.query_options_field_name))
            spec = OrderedDict(spec)
        else:
            raise InvalidQueryError('{name} must be either a list, a string, or an object; {type} provided.'
                                    .format(name=self.query_options_field_name, type=type(spec)))

        # Validate directions: +1 or -1
        if not all(d in {-1, +1} for d in spec.values()):
            raise InvalidQueryError('{} direction can be either +1 or -1'.format(self.query_options_field_name))

        # Validate columns
        self.validate_properties(spec.keys())
        return spec

    def input(self, sort_spec):
        super(SortHandler, self).input(sort_spec)
        self.sort_spec = self._input(sort_spec)
        return self

    def compile_columns(self):
        return [
            self.supported_bags[name].desc() if d == -1 else self.supported_bags[name]
            for name, d in self.sort_spec.items()
        ]

    def alter_query(self, stmt):
        if not self.sort_spec:
            return stmt  # short-circuit
        return stmt.order_by(*self.compile_columns())
