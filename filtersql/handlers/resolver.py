from typing import Iterable, Optional

from ..exc import UnknownFieldError
from ..flatten import Flattening
from ..predicate import FieldRef
from ..schema import SchemaCatalog, IncludeGraph, ForeignKeyMapping


class FieldResolver:
    """ Resolves field names into FieldRefs

        Supported field names:

        * `price`: a column of the base entity
        * `owner.email`: a column of an included relation; can go deeper: `owner.company.name`
        * `id`: when the entity has an `id_mapping`, refers to the mapped column
        * `owner.id`: when `owner` has a ForeignKeyMapping, refers to its external id column
        * `owner_id`: a belongs-to foreign key to an entity with a ForeignKeyMapping:
            refers to the external id column of the related entity,
            because that's the value the API user sees in the `owner_id` field
        * `owner_name`: a flattened attribute, refers to `owner.name`
    """

    __slots__ = ('catalog', 'entity', 'includes', 'id_mapping', 'fk_mappings', 'flattening')

    def __init__(self,
                 catalog: SchemaCatalog,
                 entity: str,
                 includes: Optional[IncludeGraph] = None,
                 id_mapping: Optional[str] = None,
                 relation_id_mapping: Iterable[ForeignKeyMapping] = (),
                 flattening: Optional[Flattening] = None):
        """ Init the resolver

        :param catalog: Schema catalog
        :param entity: The base entity
        :param includes: Relations joined for this request
        :param id_mapping: Name of the column that is exposed as `id` for the base entity
        :param relation_id_mapping: ForeignKeyMappings for related entities
        :param flattening: Flattening config
        """
        self.catalog = catalog
        self.entity = entity
        self.includes = includes if includes is not None else IncludeGraph(entity)
        self.fk_mappings = {m.entity: m for m in relation_id_mapping}
        own = self.fk_mappings.get(entity)
        self.id_mapping = id_mapping or (own.external_id_field if own else None)
        self.flattening = flattening or Flattening()

    def resolve(self, name: str, where: str, original_name: Optional[str] = None) -> FieldRef:
        """ Resolve a field name

        :param name: Field name (internal)
        :param where: Section name, for error messages
        :param original_name: The name as the user has provided it, for error messages
        :raises UnknownFieldError: the field can't be resolved
        """
        original_name = original_name or name

        # Flattened attributes
        name = self.flattening.path_of(name) or name

        *aliases, column = name.split('.')
        if not column or not all(aliases):
            raise UnknownFieldError(self.entity, original_name, where)

        if not aliases:
            return self._resolve_own_column(column, original_name, where)
        else:
            return self._resolve_related_column(aliases, column, original_name, where)

    def _resolve_own_column(self, column, original_name, where):
        # `id` is the mapped column
        if column == 'id' and self.id_mapping:
            column = self.id_mapping

        if not self.catalog.has_column(self.entity, column):
            raise UnknownFieldError(self.entity, original_name, where)

        # Belongs-to foreign key to an entity with external ids
        rel = self.catalog.foreign_keys(self.entity).get(column)
        mapping = self.fk_mappings.get(rel.target_entity) if rel else None
        if mapping is not None:
            return FieldRef(
                owner_entity=rel.target_entity,
                column=mapping.external_id_field,
                column_type=self.catalog.column_type(rel.target_entity, mapping.external_id_field),
                join_alias_chain=(rel.alias,),
                foreign_key=column,
            )

        return FieldRef(
            owner_entity=self.entity,
            column=column,
            column_type=self.catalog.column_type(self.entity, column),
        )

    def _resolve_related_column(self, aliases, column, original_name, where):
        # Follow the aliases through the include graph
        node = self.includes
        many = False
        entity = self.entity
        for alias in aliases:
            node = node.get(alias)
            if node is None:
                raise UnknownFieldError(entity, original_name, where)
            many = many or node.many
            entity = node.target_entity

        if not self.catalog.has_column(entity, column):
            raise UnknownFieldError(entity, original_name, where)

        # The primary key of an entity with external ids
        foreign_key = None
        mapping = self.fk_mappings.get(entity)
        if mapping is not None and column == mapping.internal_pk_field:
            column = mapping.external_id_field
            # `owner.id` is the same value as `owner_id`
            if len(aliases) == 1:
                rel = self.catalog.resolve_alias(self.entity, aliases[0])
                foreign_key = rel.foreign_key if rel is not None and not rel.many else None

        return FieldRef(
            owner_entity=entity,
            column=column,
            column_type=self.catalog.column_type(entity, column),
            join_alias_chain=tuple(aliases),
            many=many,
            foreign_key=foreign_key,
        )
