""" Field-level security policy: which fields may be used for filtering, and for ordering

A `Policy` has:

* `allow_list`: when given, only these fields can be used. An empty list allows nothing.
* `block_list`: these fields can never be used. Blocking wins over allowing.
* `alias_map`: public field names mapped to internal ones: {'name': 'person_name'}

A field is checked under every name it's known by: as the user has written it,
its internal name, its public name, and the path it has resolved to.
An external id behind a foreign key is also known by the foreign key column: `owner.id` is `owner_id`.
So it's impossible to sneak past the policy by using a different name for the same field.

Every clause is checked on its own: a field allowed in one clause grants nothing to another.
"""

from typing import Iterable, Mapping, Optional

from .exc import PolicyViolationError
from .predicate import FieldRef


class Policy:
    """ Allow/block lists and field aliases for one operation """

    __slots__ = ('allow_list', 'block_list', 'alias_map', '_reverse_alias_map')

    def __init__(self,
                 allow_list: Optional[Iterable[str]] = None,
                 block_list: Optional[Iterable[str]] = None,
                 alias_map: Optional[Mapping[str, str]] = None):
        self.allow_list = None if allow_list is None else frozenset(allow_list)
        self.block_list = frozenset(block_list or ())
        self.alias_map = dict(alias_map or {})
        self._reverse_alias_map = {internal: external for external, internal in self.alias_map.items()}

    def __repr__(self):
        return '{}(allow_list={!r}, block_list={!r}, alias_map={!r})'.format(
            self.__class__.__name__,
            None if self.allow_list is None else sorted(self.allow_list),
            sorted(self.block_list),
            self.alias_map)

    def to_internal(self, name: str) -> str:
        """ Get the internal name for a public field name """
        return self.alias_map.get(name, name)

    def to_external(self, name: str) -> str:
        """ Get the public name for an internal field name """
        return self._reverse_alias_map.get(name, name)

    def names_of(self, name: str, ref: Optional[FieldRef] = None) -> frozenset:
        """ All the names a field is known by """
        names = {name, self.to_internal(name), self.to_external(name)}
        if ref is not None:
            names.add(ref.path)
            # `owner.id` is `owner_id`
            if ref.foreign_key:
                names.update((ref.foreign_key, self.to_external(ref.foreign_key)))
        return frozenset(names)

    def is_allowed(self, name: str, ref: Optional[FieldRef] = None) -> bool:
        names = self.names_of(name, ref)

        # Block list wins
        if names & self.block_list:
            return False

        # Allow list, when present, has to mention the field
        if self.allow_list is not None:
            return bool(names & self.allow_list)

        return True


#: The policy that allows everything
PERMISSIVE = Policy()


class PolicyGate:
    """ Policy enforcement for one operation ('filtering', 'ordering')

        Raises `PolicyViolationError` for every field that is not allowed.
    """

    __slots__ = ('policy', 'where')

    def __init__(self, policy: Optional[Policy], where: str):
        self.policy = policy or PERMISSIVE
        self.where = where

    def to_internal(self, name: str) -> str:
        return self.policy.to_internal(name)

    def check(self, name: str, ref: Optional[FieldRef] = None):
        """ Make sure the field can be used

        :param name: The field name, as the user has provided it
        :param ref: The resolved field
        :raises PolicyViolationError: the field is blocked
        """
        if not self.policy.is_allowed(name, ref):
            raise PolicyViolationError(name, self.where)
        return ref
