""" Foreign key projection: internal surrogate keys in result rows become external identifiers

Entities may have an external identifier that the API exposes instead of their primary key:
e.g. `User.external_id = "ext-007"` for `User.id = 7`. This is configured with `ForeignKeyMapping`s.

After a query is executed, the projector:

1. Gives every object of a mapped entity its external `id`: the base rows, and nested objects.
    When the external id column was loaded, it's renamed into `id`; otherwise, the primary key is looked up.
2. Collects the values of belongs-to foreign keys that point to mapped entities:
    in rows, and in nested objects of included relations
3. Makes one batched lookup per related entity: `internal pk IN (values)`.
    Lookups for different entities are independent, and run concurrently when an executor is given.
4. Replaces the internal values with external ones.
    A value that was not found is left as it is.

The walk goes over the IncludeGraph, not over whatever the rows contain,
and builds new rows instead of modifying the given ones.
"""

from concurrent.futures import Executor
from logging import getLogger
from typing import Dict, Iterable, List, Mapping, Optional

from .exc import LookupInfrastructureError
from .schema import SchemaCatalog, IncludeGraph, ForeignKeyMapping

logger = getLogger(__name__)


class LookupStore:
    """ Storage that can find external ids by internal ones """

    def batch_find(self, entity: str, pk_field: str, external_field: str, values: List) -> Mapping:
        """ Find external ids for a list of primary keys

        :param entity: The entity to look into
        :param pk_field: Internal primary key column
        :param external_field: External id column
        :param values: Primary key values
        :return: { internal value: external value }
        """
        raise NotImplementedError


class DictLookupStore(LookupStore):
    """ A LookupStore over in-memory dicts: { entity: { internal: external } } """

    def __init__(self, data: Mapping[str, Mapping]):
        self.data = data

    def batch_find(self, entity, pk_field, external_field, values):
        known = self.data.get(entity, {})
        return {v: known[v] for v in values if v in known}


class ForeignKeyProjector:
    """ Replaces internal keys with external identifiers in result rows """

    def __init__(self,
                 catalog: SchemaCatalog,
                 entity: str,
                 lookup_store: LookupStore,
                 mappings: Iterable[ForeignKeyMapping] = (),
                 includes: Optional[IncludeGraph] = None,
                 id_mapping: Optional[str] = None,
                 executor: Optional[Executor] = None):
        """ Init the projector

        :param catalog: Schema catalog: tells which columns are foreign keys
        :param entity: The base entity
        :param lookup_store: Where to look up external ids
        :param mappings: ForeignKeyMappings of related entities (and, possibly, of the base entity)
        :param includes: Relations that are included into the rows
        :param id_mapping: The base entity's external id column. Overrides the base entity's mapping.
        :param executor: Run lookups for different entities concurrently
        """
        self.catalog = catalog
        self.entity = entity
        self.lookup_store = lookup_store
        self.includes = includes if includes is not None else IncludeGraph(entity)
        self.executor = executor

        #: { entity: ForeignKeyMapping }
        self.mappings = {m.entity: m for m in mappings}
        if id_mapping:
            self.mappings[entity] = ForeignKeyMapping(entity, catalog.primary_key(entity), id_mapping)

    def project(self, rows: Iterable[dict]) -> List[dict]:
        """ Project the rows

        :raises LookupInfrastructureError: a lookup has failed. No partial results are returned.
        """
        rows = list(rows)

        # Collect internal values
        wanted: Dict[str, set] = {}
        for row in rows:
            self._collect(row, self.entity, self.includes.includes, wanted)

        # Look them up
        maps = self._lookup_all(wanted)

        # Rewrite
        return [self._rewrite(row, self.entity, self.includes.includes, maps)
                for row in rows]

    def _fk_columns(self, entity: str) -> Dict[str, ForeignKeyMapping]:
        """ Get foreign key columns that refer to mapped entities: { column: mapping } """
        return {column: self.mappings[rel.target_entity]
                for column, rel in self.catalog.foreign_keys(entity).items()
                if rel.target_entity in self.mappings}

    def _collect(self, row: dict, entity: str, includes, wanted: Dict[str, set]):
        """ Collect the values to look up, from the row and its nested objects """
        # Own id, when the external id was not loaded
        own = self.mappings.get(entity)
        if own is not None and own.external_id_field not in row and row.get(own.internal_pk_field) is not None:
            wanted.setdefault(entity, set()).add(row[own.internal_pk_field])

        # Foreign keys
        for column, mapping in self._fk_columns(entity).items():
            value = row.get(column)
            if value is not None:
                wanted.setdefault(mapping.entity, set()).add(value)

        # Nested objects
        for include in includes:
            for nested in _nested_objects(row.get(include.alias)):
                self._collect(nested, include.target_entity, include.includes, wanted)

    def _lookup_all(self, wanted: Dict[str, set]) -> Dict[str, Mapping]:
        """ Make one lookup per entity """
        if self.executor is not None and len(wanted) > 1:
            futures = {entity: self.executor.submit(self._lookup, entity, values)
                       for entity, values in wanted.items()}
            return {entity: future.result() for entity, future in futures.items()}
        else:
            return {entity: self._lookup(entity, values)
                    for entity, values in wanted.items()}

    def _lookup(self, entity: str, values: set) -> Mapping:
        mapping = self.mappings[entity]
        logger.debug('Looking up %d %s.%s values', len(values), entity, mapping.external_id_field)
        try:
            return self.lookup_store.batch_find(entity, mapping.internal_pk_field, mapping.external_id_field,
                                                sorted(values, key=repr))
        except LookupInfrastructureError:
            raise
        except Exception as e:
            raise LookupInfrastructureError(entity, str(e)) from e

    def _rewrite(self, row: dict, entity: str, includes, maps: Dict[str, Mapping]) -> dict:
        """ Build a new row with external ids """
        row = dict(row)

        # Own id
        own = self.mappings.get(entity)
        if own is not None:
            if own.external_id_field in row:
                row['id'] = row.pop(own.external_id_field)
            elif row.get(own.internal_pk_field) is not None:
                pk = row[own.internal_pk_field]
                row['id'] = maps.get(entity, {}).get(pk, pk)

        # Foreign keys
        for column, mapping in self._fk_columns(entity).items():
            value = row.get(column)
            if value is not None:
                row[column] = maps.get(mapping.entity, {}).get(value, value)

        # Nested objects
        for include in includes:
            value = row.get(include.alias)
            if isinstance(value, list):
                row[include.alias] = [self._rewrite(o, include.target_entity, include.includes, maps)
                                      for o in _nested_objects(value)]
            elif isinstance(value, dict):
                row[include.alias] = self._rewrite(value, include.target_entity, include.includes, maps)
        return row


def _nested_objects(value):
    if isinstance(value, list):
        return [o for o in value if isinstance(o, dict)]
    if isinstance(value, dict):
        return [value]
    return []


def project(rows, catalog, entity, lookup_store, mappings, includes=None, id_mapping=None, executor=None) -> List[dict]:
    """ Replace internal keys with external identifiers in result rows

    See: ForeignKeyProjector
    """
    return ForeignKeyProjector(catalog, entity, lookup_store, mappings,
                               includes=includes, id_mapping=id_mapping, executor=executor).project(rows)
