"""
### Read preference

A read-consistency hint: which replica the read may go to.

```javascript
{ read_preference: 'secondary' }
```

The hint is attached to the statement as an execution option, `read_preference`.
A routing session picks it up in its `get_bind()`:

```python
class RoutingSession(Session):
    def get_bind(self, mapper=None, clause=None, **kw):
        if clause is not None and clause.get_execution_options().get('read_preference', 'primary') != 'primary':
            return engines['replica'].sync_engine
        return engines['primary'].sync_engine
```

A plain session ignores it.
"""

from .base import QueryHandlerBase
from ..exc import InvalidQueryError


class ReadPreferenceHandler(QueryHandlerBase):
    """ Read preference: an execution option """

    query_options_field_name = 'read_preference'

    #: Known read preferences
    READ_PREFERENCES = frozenset((
        'primary', 'primaryPreferred',
        'secondary', 'secondaryPreferred',
        'nearest',
    ))

    def __init__(self, model, resource, default_read_preference=None):
        """ Init a read preference

        :param default_read_preference: The read preference to use when the request has none
        """
        super(ReadPreferenceHandler, self).__init__(model, resource)

        # Config
        if default_read_preference is not None and default_read_preference not in self.READ_PREFERENCES:
            raise ValueError('Unknown read preference: {!r}'.format(default_read_preference))
        self.default_read_preference = default_read_preference

        # On input
        self.read_preference = None

    def _get_supported_bags(self):
        return None  # not used by this class

    def input(self, read_preference):
        super(ReadPreferenceHandler, self).input(read_preference)
        if read_preference is not None and read_preference not in self.READ_PREFERENCES:
            raise InvalidQueryError('Read preference must be one of: {}'
                                    .format(', '.join(sorted(self.READ_PREFERENCES))))
        self.read_preference = read_preference or self.default_read_preference
        return self

    def alter_query(self, stmt):
        if not self.read_preference:
            return stmt  # short-circuit
        return stmt.execution_options(read_preference=self.read_preference)
