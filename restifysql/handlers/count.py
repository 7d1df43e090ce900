"""
### Count

Return the number of items, without returning the items themselves.

A count honors the filter, and the skip & limit: with `{skip: 10, limit: 5}`,
the count is at most 5. The sorting and the projection are irrelevant to a count.
"""

from sqlalchemy import func, select

from .base import QueryHandlerBase


class CountHandler(QueryHandlerBase):
    """ SELECT COUNT(*) """

    query_options_field_name = 'count'

    def _get_supported_bags(self):
        return None  # not used by this class

    def alter_query(self, stmt):
        """ Wrap the statement into a counting query """
        # Count the rows of a subquery: the only way a LIMIT is honored
        return select(func.count()).select_from(
            stmt.with_only_columns(self.resource.identity_column).subquery()
        )
