"""
### Skip & Limit

Slicing corresponds to the `LIMIT .. OFFSET ..` part of an SQL query.

* `limit` would limit the number of items returned by the API
* `skip` would shift the "window" a number of items

Together, these two elements implement pagination:

```javascript
$.get('/api/customer?' + $.param({
    limit: 100, // 100 items per page
    skip: 200,  // skip 200 items, meaning, we're on the third page
}))
```

Values: can be a non-negative number, or a `null`. A `0` means "no limit".
"""

from .base import QueryHandlerBase
from ..exc import InvalidQueryError


class LimitHandler(QueryHandlerBase):
    """ Limits and offsets

        Handles two keys:
        * 'skip': None, or int: OFFSET for the query
        * 'limit': None, or int: LIMIT for the query
    """

    query_options_field_name = 'limit'

    def __init__(self, model, resource, max_items=None):
        """ Init a limit

        :param model: Sqlalchemy model to work with
        :param resource: Resource model
        :param max_items: The maximum number of items that can be loaded with this query.
            The user can never go any higher than that, and this value is forced onto every list query.
        """
        super(LimitHandler, self).__init__(model, resource)

        # Config
        self.max_items = max_items
        if self.max_items is not None and self.max_items <= 0:
            raise ValueError('max_items must be a positive number')

        # On input
        self.skip = None
        self.limit = None
        #: The limit the user has asked for: without `max_items`
        self.requested_limit = None

    def input(self, skip=None, limit=None):
        super(LimitHandler, self).input((skip, limit))

        # Validate
        if not isinstance(skip, (int, NoneType)) or isinstance(skip, bool):
            raise InvalidQueryError('Skip must be either an integer, or null')
        if not isinstance(limit, (int, NoneType)) or isinstance(limit, bool):
            raise InvalidQueryError('Limit must be either an integer, or null')

        # Clamp
        skip = None if skip is None or skip <= 0 else skip
        limit = None if limit is None or limit <= 0 else limit

        # Max limit
        self.requested_limit = limit
        if self.max_items:
            limit = min(self.max_items, limit or self.max_items)

        # Done
        self.skip = skip
        self.limit = limit
        return self

    def is_input_empty(self):
        return self.skip is None and self.limit is None

    def _get_supported_bags(self):
        return None  # not used by this class

    def alter_query(self, stmt, capped=True):
        """ Apply offset() and limit() to the statement

        :param capped: Apply `max_items`. Counting doesn't: it only honors the user's own limit.
        """
        limit = self.limit if capped else self.requested_limit
        if self.skip:
            stmt = stmt.offset(self.skip)
        if limit:
            stmt = stmt.limit(limit)
        return stmt


NoneType = type(None)
