from sqlalchemy import event
from sqlalchemy.dialects import sqlite


def stmt2sql(stmt) -> str:
    """ Convert an SqlAlchemy statement into a string, with values inlined """
    return str(stmt.compile(
        dialect=sqlite.dialect(),
        compile_kwargs={'literal_binds': True},
    ))


class TestQueryStringsMixin:
    """ unittest mixin that will help testing query strings """

    def assertQuery(self, stmt, *expected_lines):
        """ Compare a query piece by piece

            Every expected line has to be present in the query
        """
        qs = stmt if isinstance(stmt, str) else stmt2sql(stmt)
        try:
            for line in '\n'.join(expected_lines).splitlines():
                self.assertIn(line.strip().rstrip(','), qs)
            return qs
        except:
            print(qs)
            raise

    def assertNotInQuery(self, stmt, *unexpected):
        qs = stmt if isinstance(stmt, str) else stmt2sql(stmt)
        for piece in unexpected:
            self.assertNotIn(piece, qs)
        return qs


class QueryCounter:
    """ Counts the number of queries

        Works with an AsyncEngine: listens to its sync_engine
    """

    def __init__(self, engine):
        super(QueryCounter, self).__init__()
        self.engine = getattr(engine, 'sync_engine', engine)
        self.n = 0

    def start_logging(self):
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler, named=True)

    def stop_logging(self):
        event.remove(self.engine, "after_cursor_execute", self._after_cursor_execute_event_handler)
        self._done()

    def _done(self):
        """ Handler executed when logging is stopped """

    def _after_cursor_execute_event_handler(self, **kw):
        self.n += 1

    def print_log(self):
        pass  # nothing to do

    # Context manager

    def __enter__(self):
        self.start_logging()
        return self

    def __exit__(self, *exc):
        self.stop_logging()
        if exc != (None, None, None):
            self.print_log()
        return False


class QueryLogger(QueryCounter, list):
    """ Log raw SQL queries on the given engine """

    def _after_cursor_execute_event_handler(self, **kw):
        super(QueryLogger, self)._after_cursor_execute_event_handler()
        self.append(kw['statement'])

    def print_log(self):
        for i, q in enumerate(self):
            print('=' * 5, ' Query #{}'.format(i))
            print(q)


class ExpectedQueryCounter(QueryLogger):
    """ A QueryLogger that expects a certain number of queries, raises an error otherwise """

    def __init__(self, engine, expected_queries, comment):
        super(ExpectedQueryCounter, self).__init__(engine)
        self.expected_queries = expected_queries
        self.comment = comment

    def _done(self):
        if self.n != self.expected_queries:
            self.print_log()
            raise AssertionError('{} (expected {} queries, actually had {})'
                                 .format(self.comment, self.expected_queries, self.n))
