from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query


class CountingQuery:
    """ A page of results together with the total number of matching rows

        The page is loaded with a window function:

            SELECT products.*, count(*) OVER () FROM products ... LIMIT 20 OFFSET 40

        `count(*) OVER ()` is evaluated before LIMIT and OFFSET, so every row carries the total.
        Only when the page is empty because of the OFFSET is a separate COUNT query made.

        Example:

            page = CountingQuery(ssn.query(Product).filter(...).limit(20).offset(40))
            products = list(page)  # entities, as the original query would give
            page.count  # -> 127
    """

    __slots__ = ('_query', '_rows', '_count')

    def __init__(self, query: Query):
        #: The single-entity query to run: with its LIMIT and OFFSET
        self._query = query
        #: Loaded entities; `None` until the query is executed
        self._rows: Optional[List] = None
        #: Total count; `None` until the query is executed
        self._count: Optional[int] = None

    @property
    def count(self) -> int:
        """ The number of rows that match, LIMIT and OFFSET ignored """
        if self._count is None:
            self._load()
        return self._count

    def __iter__(self):
        if self._rows is None:
            self._load()
        return iter(self._rows)

    def _load(self):
        rows = self._query.add_columns(func.count().over()).all()

        if rows:
            self._rows = [entity for entity, _ in rows]
            self._count = rows[0][-1]
        else:
            self._rows = []
            # No rows: either nothing matches, or the OFFSET has gone past the last row
            self._count = self._count_separately() if self._has_offset() else 0

    def _count_separately(self) -> int:
        return (self._query
                .enable_eagerloads(False)
                .limit(None)
                .offset(None)
                .order_by(None)
                .count())

    def _has_offset(self) -> bool:
        return self._query._offset_clause is not None  # accessing protected property
