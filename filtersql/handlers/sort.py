"""
### Ordering

Ordering corresponds to the `ORDER BY` part of an SQL query.

#### Syntax

* Object syntax: a single object, or an array of them

    ```javascript
    { ordering: [ {order_by: 'price', direction: 'DESC'}, {order_by: 'name'} ] }
    ```

    The column can also be given as `orderby`, `column`, or `field`; the direction as `dir`.
    A missing direction means the default one.

* String syntax: a comma-separated list of columns, prefixed with `-` for `DESC`, `+` for `ASC`.

    ```javascript
    { ordering: '-price,name' }  // -> price DESC, name <default direction>
    ```

Columns of included relations can be used too: `owner.name`, but not through to-many relations.

When no ordering is given, the default one is used: ordering is never empty,
because pagination can't be stable without it.
"""

from enum import Enum
from typing import FrozenSet, NamedTuple, Optional, Tuple

from .base import CompilerBase
from ..exc import MalformedSpecError
from ..predicate import FieldRef, RequiredJoin


class Direction(Enum):
    ASC = 'ASC'
    DESC = 'DESC'

    @classmethod
    def parse(cls, value, default: 'Direction') -> 'Direction':
        """ Parse a direction: 'ASC', 'desc', +1, -1, or None for the default

        :raises MalformedSpecError: invalid direction
        """
        if value is None or value == '':
            return default
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        if value in (1, -1) and not isinstance(value, bool):
            return cls.ASC if value == 1 else cls.DESC
        raise MalformedSpecError('ordering direction can be either ASC or DESC; {!r} provided'.format(value))


class OrderSpec(NamedTuple):
    """ One ordering column """
    #: Field name, as the user has provided it
    field: str
    ref: FieldRef
    direction: Direction

    def to_dict(self) -> dict:
        return {'order_by': self.field, 'direction': self.direction.value}


class CompiledOrdering(NamedTuple):
    """ The compiled ordering, plus the joins it requires """
    order: Tuple[OrderSpec, ...]
    required_joins: FrozenSet[RequiredJoin] = frozenset()

    def to_list(self) -> list:
        """ Serialize back into `{order_by, direction}` objects """
        return [o.to_dict() for o in self.order]


class OrderingBuilder(CompilerBase):
    """ Compiles an ordering specification into a list of OrderSpec """

    query_object_section_name = 'ordering'

    #: Keys an ordering object can name its column with
    _column_keys = ('order_by', 'orderby', 'column', 'field')
    #: Keys an ordering object can name its direction with
    _direction_keys = ('direction', 'dir')

    def __init__(self, catalog, entity, includes=None, policy=None, resolver=None,
                 default_order_by: str = 'id',
                 default_order_dir='ASC',
                 **resolver_kwargs):
        """ Init the ordering compiler

        :param default_order_by: The column to order by when nothing is given.
            An entity-level `order_by` option from the catalog overrides it.
        :param default_order_dir: Direction for the default column, and for columns without a direction.
            An entity-level `order_dir` option from the catalog overrides it.
        """
        super(OrderingBuilder, self).__init__(catalog, entity, includes, policy, resolver, **resolver_kwargs)

        options = catalog.entity_options(entity)
        self.default_order_by = options.get('order_by') or default_order_by
        self.default_order_dir = Direction.parse(options.get('order_dir') or default_order_dir, Direction.ASC)

    def compile(self, spec, direction=None) -> CompiledOrdering:
        """ Compile an ordering specification

        :param spec: Ordering spec: object, array, string, or None
        :param direction: The direction for columns that don't have one. Default: `default_order_dir`
        :rtype: CompiledOrdering
        """
        default_direction = Direction.parse(direction, self.default_order_dir)

        order = []
        joins = set()
        for field, dir in self._input(spec):
            ref = self.resolve_field(field)
            if ref.many:
                raise MalformedSpecError('Can\'t order by "{}": it is behind a to-many relation'.format(field))
            if ref.is_related:
                joins.add(RequiredJoin(ref.join_alias_chain))
            order.append(OrderSpec(field, ref, Direction.parse(dir, default_direction)))

        # Default
        if not order:
            order.append(self.default_ordering())

        return CompiledOrdering(tuple(order), frozenset(joins))

    def default_ordering(self) -> OrderSpec:
        """ Get the default ordering column. It's not subject to the policy. """
        return OrderSpec(self.default_order_by,
                         self.resolve_field(self.default_order_by, check_policy=False),
                         self.default_order_dir)

    def _input(self, spec):
        """ Normalize the input into a list of (field, direction | None) """
        # Empty
        if not spec:
            return []

        # String syntax
        if isinstance(spec, str):
            return self._parse_prefixed_string(spec)

        # Object syntax
        if isinstance(spec, dict):
            spec = [spec]

        # Array
        if isinstance(spec, (list, tuple)):
            result = []
            for item in spec:
                if isinstance(item, str):
                    result.extend(self._parse_prefixed_string(item))
                elif isinstance(item, dict):
                    result.append(self._parse_object(item))
                else:
                    raise MalformedSpecError('{} items must be objects or strings; {} provided'
                                             .format(self.query_object_section_name, type(item).__name__))
            return result

        raise MalformedSpecError('{name} must be either an array, a string, or an object; {type} provided.'
                                 .format(name=self.query_object_section_name, type=type(spec).__name__))

    @staticmethod
    def _parse_prefixed_string(spec: str):
        """ 'a,-b,+c' -> [('a', None), ('b', 'DESC'), ('c', 'ASC')] """
        result = []
        for token in spec.split(','):
            token = token.strip()
            if token.startswith('-'):
                result.append((token[1:].strip(), 'DESC'))
            elif token.startswith('+'):
                result.append((token[1:].strip(), 'ASC'))
            elif token:
                result.append((token, None))
        return result

    def _parse_object(self, item: dict):
        """ {order_by: 'a', direction: 'DESC'} -> ('a', 'DESC') """
        field = next((item[k] for k in self._column_keys if item.get(k)), None)
        if not isinstance(field, str):
            raise MalformedSpecError('{}: an object must name a column with "order_by"'
                                     .format(self.query_object_section_name))
        direction = next((item[k] for k in self._direction_keys if k in item), None)
        return field, direction


def compile_order(spec, catalog, entity, includes=None, policy=None,
                  default_order_by='id', default_order_dir='ASC', direction=None,
                  **resolver_kwargs) -> CompiledOrdering:
    """ Compile an ordering specification

    :param spec: Ordering specification
    :param catalog: Schema catalog
    :param entity: The base entity
    :param includes: IncludeGraph: relations joined for this request
    :param policy: Ordering policy
    :param default_order_by: Default column
    :param default_order_dir: Default direction
    :param direction: Direction for columns without one, e.g. from the `order_dir` query string parameter
    :raises ValidationError: invalid specification
    """
    return OrderingBuilder(catalog, entity, includes, policy,
                           default_order_by=default_order_by,
                           default_order_dir=default_order_dir,
                           **resolver_kwargs).compile(spec, direction)
