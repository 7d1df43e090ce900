"""
### Distinct

Get the distinct values of a single field, instead of the documents:

```javascript
$.get('/api/customer?' + $.param({
    distinct: 'name',
    filter: JSON.stringify({ age: { $gte: 18 } }),
}))
```

The result is a plain list of values.
"""

from .base import QueryHandlerBase
from ..exc import InvalidQueryError


class DistinctHandler(QueryHandlerBase):
    """ SELECT DISTINCT <column> """

    query_options_field_name = 'distinct'

    def __init__(self, model, resource):
        super(DistinctHandler, self).__init__(model, resource)

        # On input
        self.field = None

    def _get_supported_bags(self):
        return self.resource.columns

    def input(self, field):
        super(DistinctHandler, self).input(field)
        if not isinstance(field, (str, NoneType)):
            raise InvalidQueryError('Distinct must be a field name')
        if field:
            self.validate_properties([field])
        self.field = field or None
        return self

    def compile_columns(self):
        return [self.supported_bags[self.field]]

    def alter_query(self, stmt):
        if not self.field:
            return stmt  # short-circuit
        return stmt.with_only_columns(*self.compile_columns()).distinct()


NoneType = type(None)
