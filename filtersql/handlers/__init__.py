"""
Every request is made of sections, and every section is handled by its own compiler:

* `filtering`: PredicateBuilder
* `ordering`: OrderingBuilder
* `paging`: PaginationCalculator

Compilers only hold configuration: compilation itself is pure,
and one compiler can serve any number of requests.
"""

from .base import CompilerBase
from .resolver import FieldResolver
from .filter import PredicateBuilder, compile_filter
from .sort import OrderingBuilder, OrderSpec, CompiledOrdering, Direction, compile_order
from .limit import PaginationCalculator, Pagination, compile_pagination
