""" Flattening: lift attributes of an included relation to the top level of every row

Config:

    flattening=[
        {'as': 'owner', 'attributes': ['email', ('name', 'owner_name')]},
    ]

With this config:

* The `owner` relation is always included
* `{'owner': {'email': 'a@b', 'name': 'Alice'}}` in a row becomes `{'email': 'a@b', 'owner_name': 'Alice'}`
* The API user can filter and order by `email` and `owner_name`: they refer to `owner.email` and `owner.name`

A to-many relation gives the attributes of its first object.
"""

from typing import Iterable, List, Optional, Tuple


class FlattenedRelation:
    """ Flattening config for one relation """

    __slots__ = ('alias', 'attributes')

    def __init__(self, alias: str, attributes: Iterable):
        if not alias or '.' in alias:
            raise ValueError('Flattening only works with a direct relation; got {!r}'.format(alias))
        self.alias = alias
        #: list of (source attribute, flat name)
        self.attributes: List[Tuple[str, str]] = [
            (a, a) if isinstance(a, str) else tuple(a)
            for a in attributes
        ]

    def __repr__(self):
        return '{}({!r}, {!r})'.format(self.__class__.__name__, self.alias, self.attributes)

    def flatten(self, row: dict) -> dict:
        row = dict(row)
        nested = row.pop(self.alias, None)
        if isinstance(nested, list):
            nested = nested[0] if nested else None
        for source, target in self.attributes:
            row[target] = nested.get(source) if nested else None
        return row


class Flattening:
    """ All flattening configs for an entity """

    __slots__ = ('relations', '_paths')

    def __init__(self, config=None):
        if isinstance(config, dict):
            config = [config]
        self.relations = [
            FlattenedRelation(c['as'], c.get('attributes', ()))
            for c in (config or ())
        ]

        #: flat name => dotted path
        self._paths = {
            target: '{}.{}'.format(rel.alias, source)
            for rel in self.relations
            for source, target in rel.attributes
        }

    def __bool__(self):
        return bool(self.relations)

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.relations)

    def path_of(self, name: str) -> Optional[str]:
        """ Get the dotted path for a flat name; `None` if it's not a flattened attribute """
        return self._paths.get(name)

    def aliases(self) -> List[str]:
        return [rel.alias for rel in self.relations]

    def flatten_rows(self, rows: Iterable[dict]) -> List[dict]:
        """ Flatten every row. Rows are copied, never modified. """
        result = []
        for row in rows:
            for rel in self.relations:
                row = rel.flatten(row)
            result.append(row)
        return result
