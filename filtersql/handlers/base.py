from typing import Optional

from ..policy import Policy, PolicyGate
from ..predicate import FieldRef
from ..schema import SchemaCatalog, IncludeGraph
from .resolver import FieldResolver


class CompilerBase:
    """ A compiler for one section of the request: filtering, ordering

        Holds configuration only: every compile() call is independent,
        so one object can serve any number of requests.
    """

    #: Name of the request section that this object is capable of handling
    query_object_section_name = None

    def __init__(self,
                 catalog: SchemaCatalog,
                 entity: str,
                 includes: Optional[IncludeGraph] = None,
                 policy: Optional[Policy] = None,
                 resolver: Optional[FieldResolver] = None,
                 **resolver_kwargs):
        """ Init the compiler

        :param catalog: Schema catalog
        :param entity: The base entity
        :param includes: Relations joined for this request
        :param policy: The allow/block policy for this section
        :param resolver: Custom FieldResolver.
            When not given, one is made with `resolver_kwargs`: `id_mapping`, `relation_id_mapping`, `flattening`
        """
        #: Schema catalog
        self.catalog = catalog
        #: The entity to compile for
        self.entity = entity
        #: Relations joined for this request
        self.includes = includes if includes is not None else IncludeGraph(entity)
        #: Policy enforcement
        self.gate = PolicyGate(policy, self.query_object_section_name)
        #: Field resolution
        self.resolver = resolver or FieldResolver(catalog, entity, self.includes, **resolver_kwargs)

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.entity)

    def resolve_field(self, name: str, check_policy: bool = True) -> FieldRef:
        """ Resolve a field name as provided by the user, and check it against the policy

        :raises UnknownFieldError: no such field
        :raises PolicyViolationError: the field is not allowed
        """
        ref = self.resolver.resolve(self.gate.to_internal(name), self.query_object_section_name, original_name=name)
        if check_policy:
            self.gate.check(name, ref)
        return ref
