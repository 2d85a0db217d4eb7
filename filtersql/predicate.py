""" Compiled filters: a tree of clauses and boolean combinators

A compiled filter is a `Predicate`: either a leaf `Clause` (field, operator, value),
or a `Combinator` that puts other predicates together with AND or OR.
An AND combinator with no children is the canonical "always true" predicate.

`FilterContext` carries a predicate together with the joins it requires.
It's an immutable value: combining contexts always gives a new one.
"""

from enum import Enum
from typing import Any, FrozenSet, NamedTuple, Optional, Tuple, Union

from .operators import OperatorKind
from .schema import ColumnType


class BoolOp(Enum):
    AND = 'and'
    OR = 'or'


class FieldRef(NamedTuple):
    """ The resolved location of a field: possibly, behind a chain of joins """
    #: The entity that has the column
    owner_entity: str
    #: Column name on that entity
    column: str
    column_type: ColumnType
    #: Aliases to follow from the base entity. Empty for the base entity's own columns.
    join_alias_chain: Tuple[str, ...] = ()
    #: Is any of the hops a to-many relation?
    many: bool = False
    #: The base entity's belongs-to foreign key that holds the same value as this (external id) column.
    #: Set for `owner_id` and `owner.id` when `owner` has a ForeignKeyMapping.
    foreign_key: Optional[str] = None

    @property
    def is_related(self) -> bool:
        return bool(self.join_alias_chain)

    @property
    def path(self) -> str:
        return '.'.join(self.join_alias_chain + (self.column,))


class RequiredJoin(NamedTuple):
    """ A relation that has to be joined because some clause refers to a field behind it """
    alias_chain: Tuple[str, ...]


class Clause(NamedTuple):
    """ A leaf predicate: field, operator, prepared value """
    field: FieldRef
    kind: OperatorKind
    value: Any
    #: The operator token that the user has provided
    token: Optional[str] = None

    def __repr__(self):
        return '{} {} {!r}'.format(self.field.path, self.kind.value, self.value)


class Combinator(NamedTuple):
    """ A boolean AND/OR node """
    op: BoolOp
    children: Tuple['Predicate', ...] = ()

    def __repr__(self):
        return '({}: {!r})'.format(self.op.value, list(self.children))


Predicate = Union[Clause, Combinator]

#: The predicate that matches all rows
ALWAYS_TRUE = Combinator(BoolOp.AND, ())


def is_always_true(predicate: Predicate) -> bool:
    return predicate == ALWAYS_TRUE


def and_(*predicates: Predicate) -> Predicate:
    """ AND predicates together, merging structurally

        Nested AND combinators are spliced into the result,
        "always true" predicates are dropped, OR sub-trees are kept as they are.
        A single predicate is returned as is.
    """
    children = []
    for p in predicates:
        if isinstance(p, Combinator) and p.op == BoolOp.AND:
            children.extend(p.children)
        else:
            children.append(p)

    if len(children) == 1:
        return children[0]
    return Combinator(BoolOp.AND, tuple(children))


def or_(*predicates: Predicate) -> Predicate:
    """ OR predicates together, wrapping them in an explicit disjunction

        A single predicate is returned as is.
        No predicates at all, or any "always true" predicate, give "always true".
    """
    children = list(predicates)
    if not children or any(is_always_true(p) for p in children):
        return ALWAYS_TRUE
    if len(children) == 1:
        return children[0]
    return Combinator(BoolOp.OR, tuple(children))


def walk_clauses(predicate: Predicate):
    """ Iterate over every Clause in the tree, left to right """
    if isinstance(predicate, Clause):
        yield predicate
    else:
        for child in predicate.children:
            yield from walk_clauses(child)


class FilterContext:
    """ A compiled filter: the predicate, plus the joins it requires

        Immutable: use `and_()` and `or_()` to get combined contexts.
    """

    __slots__ = ('predicate', 'required_joins')

    def __init__(self, predicate: Predicate = ALWAYS_TRUE, required_joins: FrozenSet[RequiredJoin] = frozenset()):
        self.predicate = predicate
        self.required_joins = frozenset(required_joins)

    def __repr__(self):
        return '{}({!r}, joins={!r})'.format(self.__class__.__name__, self.predicate, sorted(self.required_joins))

    def __eq__(self, other):
        return (isinstance(other, FilterContext)
                and self.predicate == other.predicate
                and self.required_joins == other.required_joins)

    def __hash__(self):
        return hash((self.predicate, self.required_joins))

    @property
    def is_always_true(self) -> bool:
        return is_always_true(self.predicate)

    def and_(self, *others: 'FilterContext') -> 'FilterContext':
        """ Get a context that matches rows that match this one, and all the others """
        return FilterContext(
            and_(self.predicate, *(o.predicate for o in others)),
            self.required_joins.union(*(o.required_joins for o in others)),
        )

    def or_(self, *others: 'FilterContext') -> 'FilterContext':
        """ Get a context that matches rows that match this one, or any of the others """
        return FilterContext(
            or_(self.predicate, *(o.predicate for o in others)),
            self.required_joins.union(*(o.required_joins for o in others)),
        )

    def clauses(self):
        return list(walk_clauses(self.predicate))
