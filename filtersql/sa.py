""" SchemaCatalog over SqlAlchemy declarative models

Entities are known by their model class names: `User`, `Product`.
Entity-level options are taken from the `__filtersql__` attribute of the model:

    class Product(Base):
        __tablename__ = 'products'
        __filtersql__ = dict(page_size=20, order_by='name', order_dir='ASC')
"""

from collections import OrderedDict
from typing import Dict, Iterable, Mapping

from sqlalchemy import inspect, TypeDecorator, Column
from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String
from sqlalchemy.orm import RelationshipProperty
from sqlalchemy.orm.interfaces import MANYTOONE
from sqlalchemy.sql.type_api import TypeEngine

from .schema import SchemaCatalog, ColumnType, Relation


class SqlAlchemyCatalog(SchemaCatalog):
    """ Schema catalog built by inspecting SqlAlchemy models """

    #: SqlAlchemy types => column types. First match wins: order matters.
    _column_types = (
        (Boolean, ColumnType.BOOLEAN),
        (Integer, ColumnType.INTEGER),
        (Numeric, ColumnType.DECIMAL),  # also: Float
        (DateTime, ColumnType.DATETIME),
        (Date, ColumnType.DATE),
        (String, ColumnType.TEXT),  # also: Text, Unicode, Enum
    )

    def __init__(self, models: Iterable[type]):
        """ Init the catalog

        :param models: Declarative models. Relations are only visible when their target model is in the catalog.
        """
        self._models: Dict[str, type] = OrderedDict((m.__name__, m) for m in models)
        self._columns = {name: self._init_columns(inspect(model)) for name, model in self._models.items()}
        self._relations = {name: self._init_relations(inspect(model)) for name, model in self._models.items()}

    @classmethod
    def for_base(cls, base) -> 'SqlAlchemyCatalog':
        """ Get a catalog of every model of a declarative base """
        return cls(mapper.class_ for mapper in base.registry.mappers)

    def _init_columns(self, insp) -> Mapping[str, ColumnType]:
        return OrderedDict(
            (name, self.column_type_of(c.expression.type))
            for name, c in insp.column_attrs.items()
            # ignore Labels and other stuff that .items() will always yield
            if isinstance(c.expression, Column)
        )

    def _init_relations(self, insp) -> Mapping[str, Relation]:
        relations = OrderedDict()
        for name, rel in insp.relationships.items():  # type: str, RelationshipProperty
            relations[name] = Relation(
                alias=name,
                target_entity=rel.mapper.class_.__name__,
                many=rel.uselist,
                through_entity=rel.secondary.name if rel.secondary is not None else None,
                foreign_key=self._foreign_key_of(insp, rel),
            )
        return relations

    @staticmethod
    def _foreign_key_of(insp, rel: RelationshipProperty):
        """ Get the local foreign key attribute of a belongs-to relationship """
        if rel.direction is not MANYTOONE or len(rel.local_columns) != 1:
            return None
        column = next(iter(rel.local_columns))
        return insp.get_property_by_column(column).key

    @classmethod
    def column_type_of(cls, type: TypeEngine) -> ColumnType:
        """ Get the ColumnType for an SqlAlchemy type """
        if isinstance(type, TypeDecorator):
            # Type decorators wrap other types, so we have to handle them carefully
            type = type.impl
        for sa_type, column_type in cls._column_types:
            if isinstance(type, sa_type):
                return column_type
        return ColumnType.OTHER

    def model(self, entity: str) -> type:
        """ Get the model class for an entity """
        return self._models[entity]

    def columns(self, entity):
        return self._columns[entity]

    def relations(self, entity):
        # Only relations to models known to the catalog
        return OrderedDict((name, rel)
                           for name, rel in self._relations[entity].items()
                           if rel.target_entity in self._models)

    def primary_key(self, entity):
        insp = inspect(self._models[entity])
        return insp.get_property_by_column(insp.primary_key[0]).key

    def entity_options(self, entity):
        return getattr(self._models[entity], '__filtersql__', None) or {}
