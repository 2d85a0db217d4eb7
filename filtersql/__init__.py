"""
FilterSQL compiles filtering, ordering and paging requests from HTTP API users
into safe queries against your relational data, and post-processes the results.

The main use case is the interaction with the UI:
every time the UI needs some *filtering*, *sorting*, or *pagination*,
you won't have to write a single line of repetitive code!

```javascript
$.post('/api/product', {
    filtering: { category: 'electronics', price: { gte: 100, lte: 500 } },
    ordering: '-price,name',
    paging: { page: 2, size: 20 },
})
```

or, with a query string:

```
GET /api/product?category=electronics&price:gte=100&price:lte=500&order_by=-price,name&page=2&page_size=20
```

Every field is resolved against the schema, checked against the allow/block policy,
and every value is validated against the column type.
Internal surrogate keys can be hidden behind external identifiers.
"""

# Exceptions that are used here and there
from .exc import *

# The compiler never looks at the database: everything it knows comes from a catalog
from .schema import SchemaCatalog, DictCatalog, ColumnType, Relation, ForeignKeyMapping, Include, IncludeGraph

# Compiled filters
from .operators import OperatorKind, OperatorSpec, OperatorRegistry, default_registry
from .predicate import BoolOp, FieldRef, RequiredJoin, Clause, Combinator, FilterContext, ALWAYS_TRUE
from .policy import Policy, PolicyGate

# The heart of FilterSQL are the handlers:
# that's where your JSON objects are converted into predicates, orderings, and pages
from . import handlers
from .handlers import compile_filter, compile_order, compile_pagination

# Post-processing of results
from .projector import LookupStore, DictLookupStore, ForeignKeyProjector, project
from .flatten import Flattening

# QueryAssembler puts everything together: one request in, one ExecutionPlan out
from .query import QueryAssembler, ExecutionPlan, ExecutionResult, QueryExecutor
from .querystring import parse_querystring

# Helpers
from .util import QuerySettingsDict

# SqlAlchemy back-end: a catalog that inspects your models, and an executor that runs the plans
from .sa import SqlAlchemyCatalog
from .executor import SqlAlchemyQueryExecutor, SqlAlchemyLookupStore
