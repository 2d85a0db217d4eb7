"""
### Filtering

Filtering corresponds to the `WHERE` part of an SQL query.

Example of filtering:

```javascript
$.post('/api/product', {
    filtering: {
        // all conditions are AND-ed together
        category: 'electronics',               // case-insensitive equality for text columns
        price: { gte: 100, lte: 500 },         // 100..500
        'owner.email': { ends_with: '@example.com' },  // a column of an included relation
    }
})
```

#### Field Operators

* `{ a: 1 }` - equality check. Text columns are compared case-insensitively. Same as `ieq` for text, `eq` otherwise.
* `{ a: [1, 2] }` - any of: same as `in`
* `{ a: { eq: 1 } }` - strict equality: `a = 1`; `null` gives `a IS NULL`
* `{ a: { ieq: 'x' } }` - case-insensitive equality
* `{ a: { neq: 1 } }` - inequality: `a IS DISTINCT FROM 1`
* `{ a: { gt: 1 } }`, `gte`, `lt`, `lte` - comparison. Aliases: `>`, `>=`, `<`, `<=`, `=`, `!=`
* `{ a: { in: [1, 2] } }`, `{ a: { in: '1,2' } }` - any of. `not_in`: none of
* `{ a: { contains: 'x' } }` - `a LIKE '%x%'`. Also: `starts_with`, `ends_with`
* `icontains`, `istarts_with`, `iends_with` - case-insensitive versions
* `not_contains`, `not_icontains`, `not_starts_with`, ... - negated versions
* `{ a: { is_true: 1 } }`, `{ a: { is_false: 1 } }` - boolean checks; the value is ignored

An operator object with no known operators at all (`{ a: {} }`, `{ a: { future_op: 1 } }`)
is a no-op: this is how unsupported operators from newer clients are tolerated.
An object that mixes known and unknown operators is an error.

#### Boolean Operators

* `{ and: [ {..criteria..}, .. ] }` - all are true
* `{ or: [ {..criteria..}, .. ] }` - any is true

They can be mixed with field conditions on the same level: everything is AND-ed together.

```javascript
{ and: [ {category: 'electronics'}, {or: [ {price: {lt: 300}}, {score: {gte: 9}} ]} ] }
```
"""

from typing import Optional

from .base import CompilerBase
from ..exc import MalformedSpecError, UnknownOperatorError
from ..operators import OperatorRegistry, OperatorSpec, default_registry
from ..predicate import FieldRef, Clause, FilterContext, RequiredJoin, ALWAYS_TRUE, and_, or_


class PredicateBuilder(CompilerBase):
    """ Compiles a filter specification into a FilterContext

        Every leaf is resolved, checked against the policy, and has its value validated;
        any failure aborts the whole compilation: a partial predicate is never returned.
    """

    query_object_section_name = 'filtering'

    #: Boolean operators and how to combine their compiled children
    _boolean_operators = {
        'and': and_,
        'or': or_,
    }

    def __init__(self, catalog, entity, includes=None, policy=None, resolver=None,
                 registry: Optional[OperatorRegistry] = None,
                 **resolver_kwargs):
        """ Init the filter compiler

        :param registry: Operators to recognize. Default: `default_registry`
        """
        super(PredicateBuilder, self).__init__(catalog, entity, includes, policy, resolver, **resolver_kwargs)
        self.registry = registry or default_registry

    def compile(self, spec, check_policy: bool = True) -> FilterContext:
        """ Compile a filter specification

        :param spec: Filter spec: a dict, or None
        :param check_policy: Enforce the policy. Disabled for filters the application forces.
        :rtype: FilterContext
        """
        joins = set()
        predicate = self._compile_node(spec, joins, check_policy)
        return FilterContext(predicate, frozenset(joins))

    def _compile_node(self, node, joins, check_policy):
        """ Compile one filter object: an implicit AND over its keys """
        if node is None:
            return ALWAYS_TRUE
        if not isinstance(node, dict):
            raise MalformedSpecError('{} must be an object; {} provided'
                                     .format(self.query_object_section_name, type(node).__name__))

        predicates = []
        for key, value in node.items():
            if key in self._boolean_operators:
                predicates.append(self._compile_boolean(key, value, joins, check_policy))
            else:
                predicates.extend(self._compile_field(key, value, joins, check_policy))
        return and_(*predicates)

    def _compile_boolean(self, operator, value, joins, check_policy):
        """ Compile `and` / `or` """
        if not isinstance(value, (list, tuple)):
            raise MalformedSpecError('{}: "{}" must be an array of objects'
                                     .format(self.query_object_section_name, operator))

        children = [self._compile_node(child, joins, check_policy) for child in value]
        return self._boolean_operators[operator](*children)

    def _compile_field(self, name, value, joins, check_policy):
        """ Compile conditions on a single field

        :rtype: list[Clause]
        """
        ref = self.resolve_field(name, check_policy)

        # Operator object
        if isinstance(value, dict):
            unknown = [token for token in value if token not in self.registry]

            # No recognized operators: no-op
            if len(unknown) == len(value):
                return []
            if unknown:
                raise UnknownOperatorError(name, unknown[0])

            clauses = [self._compile_clause(name, ref, self.registry.get(token), operand)
                       for token, operand in value.items()]
        # Bare value
        else:
            clauses = [self._compile_clause(name, ref, self.registry.default_for(ref.column_type, value), value)]

        # Joins
        if ref.is_related:
            joins.add(RequiredJoin(ref.join_alias_chain))
        return clauses

    def _compile_clause(self, name: str, ref: FieldRef, operator: OperatorSpec, value) -> Clause:
        return Clause(
            field=ref,
            kind=operator.kind,
            value=operator.prepare_value(name, ref.column_type, value),
            token=operator.token,
        )


def compile_filter(spec, catalog, entity, includes=None, policy=None, registry=None, **resolver_kwargs) -> FilterContext:
    """ Compile a filter specification into a FilterContext

    :param spec: Filter specification
    :param catalog: Schema catalog
    :param entity: The base entity
    :param includes: IncludeGraph: relations joined for this request
    :param policy: Filtering policy
    :param registry: Operator registry
    :raises ValidationError: invalid specification
    """
    return PredicateBuilder(catalog, entity, includes, policy, registry=registry, **resolver_kwargs).compile(spec)
