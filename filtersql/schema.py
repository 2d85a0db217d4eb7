""" Schema metadata: what entities, columns and relations the compiler can see

The compiler never looks at the database: it only talks to a `SchemaCatalog`.
Two implementations are available:

* `DictCatalog`: described with plain dicts; handy for tests and non-SqlAlchemy back-ends
* `filtersql.sa.SqlAlchemyCatalog`: built by inspecting SqlAlchemy declarative models
"""

from collections import OrderedDict
from enum import Enum
from typing import Mapping, NamedTuple, Optional, Tuple, Union

from .exc import UnknownRelationError, MalformedSpecError


class ColumnType(Enum):
    """ Column types the compiler knows how to validate values for """
    INTEGER = 'integer'
    DECIMAL = 'decimal'
    BOOLEAN = 'boolean'
    DATE = 'date'
    DATETIME = 'datetime'
    TEXT = 'text'
    OTHER = 'other'


class Relation(NamedTuple):
    """ A relation from one entity to another, known by its alias """
    alias: str
    target_entity: str
    #: Is it a to-many relation?
    many: bool = False
    #: The association entity, for many-to-many relations
    through_entity: Optional[str] = None
    #: The local column holding the foreign key, for belongs-to relations
    foreign_key: Optional[str] = None


class ForeignKeyMapping(NamedTuple):
    """ Maps an entity's internal surrogate key to its externally exposed identifier """
    entity: str
    internal_pk_field: str
    external_id_field: str


class SchemaCatalog:
    """ Schema metadata provider

        Subclasses implement `columns()`, `relations()`, and, optionally, the rest.
    """

    def columns(self, entity: str) -> Mapping[str, ColumnType]:
        """ Get the ordered mapping of column names to their types

        :raises KeyError: unknown entity
        """
        raise NotImplementedError

    def relations(self, entity: str) -> Mapping[str, Relation]:
        """ Get the mapping of relation aliases for an entity """
        raise NotImplementedError

    def resolve_alias(self, entity: str, alias: str) -> Optional[Relation]:
        """ Resolve an alias into a related entity; `None` when there's no such relation """
        return self.relations(entity).get(alias)

    def primary_key(self, entity: str) -> str:
        """ Get the name of the primary key column """
        return 'id'

    def foreign_keys(self, entity: str) -> Mapping[str, Relation]:
        """ Get belongs-to foreign key columns: { column name: Relation } """
        return {rel.foreign_key: rel
                for rel in self.relations(entity).values()
                if rel.foreign_key and not rel.many}

    def entity_options(self, entity: str) -> Mapping:
        """ Entity-level overrides: `page_size`, `order_by`, `order_dir` """
        return {}

    def has_column(self, entity: str, column: str) -> bool:
        return column in self.columns(entity)

    def column_type(self, entity: str, column: str) -> ColumnType:
        return self.columns(entity)[column]


class DictCatalog(SchemaCatalog):
    """ A catalog described with plain dicts

        Example:

            DictCatalog(
                entities={
                    'Product': {'id': 'integer', 'name': 'text', 'owner_id': 'integer'},
                    'User': {'id': 'integer', 'external_id': 'text'},
                },
                relations={
                    'Product': {'owner': dict(target_entity='User', foreign_key='owner_id')},
                },
            )
    """

    def __init__(self, entities, relations=None, primary_keys=None, options=None):
        self._entities = {
            entity: OrderedDict((name, ColumnType(type)) for name, type in columns.items())
            for entity, columns in entities.items()
        }
        self._relations = {
            entity: {
                alias: rel if isinstance(rel, Relation) else Relation(alias=alias, **rel)
                for alias, rel in rels.items()
            }
            for entity, rels in (relations or {}).items()
        }
        self._primary_keys = primary_keys or {}
        self._options = options or {}

    def columns(self, entity):
        return self._entities[entity]

    def relations(self, entity):
        return self._relations.get(entity, {})

    def primary_key(self, entity):
        return self._primary_keys.get(entity, 'id')

    def entity_options(self, entity):
        return self._options.get(entity, {})


class Include(NamedTuple):
    """ A relation joined for the current request, with its own nested includes """
    alias: str
    target_entity: str
    many: bool = False
    through_entity: Optional[str] = None
    includes: Tuple['Include', ...] = ()

    def get(self, alias: str) -> Optional['Include']:
        for include in self.includes:
            if include.alias == alias:
                return include
        return None


class IncludeGraph:
    """ The tree of relations that are joined for this request

        Read-only: every method that "modifies" it returns a new graph.
    """

    __slots__ = ('entity', 'includes')

    def __init__(self, entity: str, includes: Tuple[Include, ...] = ()):
        self.entity = entity
        self.includes = tuple(includes)

    def __repr__(self):
        return '{}({!r}, {!r})'.format(self.__class__.__name__, self.entity, self.includes)

    def __eq__(self, other):
        return isinstance(other, IncludeGraph) and (self.entity, self.includes) == (other.entity, other.includes)

    def __hash__(self):
        return hash((self.entity, self.includes))

    def __iter__(self):
        return iter(self.includes)

    def __bool__(self):
        return bool(self.includes)

    def get(self, alias: str) -> Optional[Include]:
        for include in self.includes:
            if include.alias == alias:
                return include
        return None

    def follow(self, alias_chain) -> Optional[Include]:
        """ Follow a chain of aliases through nested includes """
        node = self
        for alias in alias_chain:
            node = node.get(alias)
            if node is None:
                return None
        return node if alias_chain else None

    def with_path(self, catalog: SchemaCatalog, alias_chain) -> 'IncludeGraph':
        """ Get a new graph that also includes the given chain of aliases """
        return IncludeGraph(self.entity,
                            _include_path(catalog, self.entity, self.includes, tuple(alias_chain), 'include'))

    def merge(self, other: 'IncludeGraph') -> 'IncludeGraph':
        """ Get a new graph with includes from both graphs """
        return IncludeGraph(self.entity, _merge_includes(self.includes, other.includes))

    def paths(self):
        """ List every alias chain in the graph, parents first """
        def walk(includes, prefix):
            for include in includes:
                path = prefix + (include.alias,)
                yield path
                yield from walk(include.includes, path)
        return list(walk(self.includes, ()))

    @classmethod
    def parse(cls, catalog: SchemaCatalog, entity: str, spec: Union[None, str, list, dict]) -> 'IncludeGraph':
        """ Build an include graph from a spec

            Spec can be:

            * 'owner' or 'owner.company': a single (dotted) relation
            * ['owner', 'tags']: a list of relations
            * {'owner': ['company']}: relations with nested includes
        """
        graph = cls(entity)
        for path in _include_spec_paths(spec, ()):
            graph = graph.with_path(catalog, path)
        return graph


def _include_spec_paths(spec, prefix):
    """ Convert an include spec into a flat list of alias chains """
    if not spec:
        return
    if isinstance(spec, str):
        yield prefix + tuple(spec.split('.'))
    elif isinstance(spec, (list, tuple)):
        for item in spec:
            yield from _include_spec_paths(item, prefix)
    elif isinstance(spec, dict):
        for alias, nested in spec.items():
            path = prefix + tuple(alias.split('.'))
            yield path
            yield from _include_spec_paths(nested, path)
    else:
        raise MalformedSpecError('includes must be a string, a list, or an object; {} provided'.format(type(spec)))


def _include_path(catalog, entity, includes, alias_chain, where):
    """ Add a chain of aliases to a tuple of includes """
    if not alias_chain:
        return includes

    alias, rest = alias_chain[0], alias_chain[1:]
    rel = catalog.resolve_alias(entity, alias)
    if rel is None:
        raise UnknownRelationError(entity, alias, where)

    result = []
    found = False
    for include in includes:
        if include.alias == alias:
            found = True
            include = include._replace(
                includes=_include_path(catalog, include.target_entity, include.includes, rest, where))
        result.append(include)

    if not found:
        result.append(Include(
            alias=alias,
            target_entity=rel.target_entity,
            many=rel.many,
            through_entity=rel.through_entity,
            includes=_include_path(catalog, rel.target_entity, (), rest, where),
        ))
    return tuple(result)


def _merge_includes(a, b):
    result = list(a)
    for include in b:
        for i, existing in enumerate(result):
            if existing.alias == include.alias:
                result[i] = existing._replace(includes=_merge_includes(existing.includes, include.includes))
                break
        else:
            result.append(include)
    return tuple(result)
