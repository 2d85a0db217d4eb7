"""
### Paging

Paging corresponds to the `LIMIT .. OFFSET ..` part of an SQL query.

```javascript
{ paging: { page: 3, size: 100 } }  // items 201..300
```

* `page`: 1-based page number. Default: 1
* `size` (or `page_size`): number of items per page.
    Default: the entity-level `page_size`, or the global default.

Missing, non-numeric, and non-positive values get the defaults.
"""

import math
from typing import NamedTuple, Optional

from ..exc import MalformedSpecError


class Pagination(NamedTuple):
    """ A page: its number and size """
    page: int
    size: int

    @property
    def limit(self) -> int:
        return self.size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size

    def total_pages(self, count: int) -> int:
        """ The number of pages for `count` items. Never less than 1. """
        return max(1, math.ceil(count / self.size))


def _positive_int(value) -> Optional[int]:
    """ Get a positive integer, or None """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = int(value) if value.is_integer() else None
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int) or value < 1:
        return None
    return value


class PaginationCalculator:
    """ Normalizes page & size into a Pagination """

    query_object_section_name = 'paging'

    def __init__(self, default_size: int = 100, entity_size: Optional[int] = None, max_size: Optional[int] = None):
        """ Init the calculator

        :param default_size: Page size when none is given
        :param entity_size: Entity-level page size: overrides `default_size`
        :param max_size: The maximum page size. The user can never go any higher than that.
        """
        self.default_size = entity_size or default_size
        self.max_size = max_size
        assert self.default_size > 0
        assert self.max_size is None or self.max_size > 0

    def compile(self, spec=None) -> Pagination:
        """ Compile a paging spec: {page, size}

        :rtype: Pagination
        """
        if spec is None:
            spec = {}
        if not isinstance(spec, dict):
            raise MalformedSpecError('{} must be an object; {} provided'
                                     .format(self.query_object_section_name, type(spec).__name__))

        page = _positive_int(spec.get('page')) or 1
        size = _positive_int(spec.get('size', spec.get('page_size'))) or self.default_size

        # Max size
        if self.max_size:
            size = min(self.max_size, size)

        return Pagination(page, size)


def compile_pagination(spec=None, default_size: int = 100, entity_size: Optional[int] = None, max_size: Optional[int] = None) -> Pagination:
    """ Compile a paging spec into a Pagination: `limit`, `offset`, `page`, `size` """
    return PaginationCalculator(default_size, entity_size, max_size).compile(spec)
