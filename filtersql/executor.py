""" SqlAlchemy back-end: runs ExecutionPlans, and looks up external ids

* `SqlAlchemyQueryExecutor`: compiles a plan into a `Query`, loads included relations, counts rows
* `SqlAlchemyLookupStore`: batched `pk IN (...)` lookups for the ForeignKeyProjector
* `CaseInsensitiveMatcher`: the dialect-specific way to compare strings case-insensitively

Sessions and transactions are owned by the caller: the executor gets a Session,
the lookup store gets a session factory (lookups may run in threads, and sessions can't be shared).
"""

from logging import getLogger
from typing import Callable, Iterable, Optional

from sqlalchemy import true
from sqlalchemy.orm import Query, Session, aliased, selectinload
from sqlalchemy.sql.expression import and_, or_
from sqlalchemy.sql.functions import func

from .handlers.sort import Direction
from .operators import OperatorKind, LIKE_ESCAPE, escape_like
from .predicate import BoolOp, Clause, Predicate
from .projector import LookupStore
from .query import ExecutionPlan, ExecutionResult, QueryExecutor
from .sa import SqlAlchemyCatalog
from .schema import Include
from .util import CountingQuery

logger = getLogger(__name__)


# region Case-insensitive matching

class CaseInsensitiveMatcher:
    """ Dialect-specific case-insensitive comparisons """

    def equals(self, col, value):
        raise NotImplementedError

    def like(self, col, pattern):
        raise NotImplementedError

    def not_like(self, col, pattern):
        raise NotImplementedError


class ILikeMatcher(CaseInsensitiveMatcher):
    """ Postgres: ILIKE """

    def equals(self, col, value):
        return col.ilike(escape_like(value), escape=LIKE_ESCAPE)

    def like(self, col, pattern):
        return col.ilike(pattern, escape=LIKE_ESCAPE)

    def not_like(self, col, pattern):
        return col.not_ilike(pattern, escape=LIKE_ESCAPE)


class LowerLikeMatcher(CaseInsensitiveMatcher):
    """ Any other dialect: lower() on both sides """

    def equals(self, col, value):
        return func.lower(col) == func.lower(value)

    def like(self, col, pattern):
        return func.lower(col).like(func.lower(pattern), escape=LIKE_ESCAPE)

    def not_like(self, col, pattern):
        return func.lower(col).not_like(func.lower(pattern), escape=LIKE_ESCAPE)


def matcher_for_dialect(dialect_name: str) -> CaseInsensitiveMatcher:
    """ Get the matcher that suits the dialect """
    if dialect_name == 'postgresql':
        return ILikeMatcher()
    return LowerLikeMatcher()

# endregion


class SqlAlchemyQueryExecutor(QueryExecutor):
    """ Runs ExecutionPlans with SqlAlchemy

        Related columns in filters are compiled into EXISTS subqueries: `rel.has()`, `rel.any()`,
        so that to-many relations never multiply the rows.
        Related columns in ordering are LEFT JOINed (only to-one relations can be ordered by).
        Included relations are loaded with `selectinload()` and serialized into nested dicts.
    """

    # Operators
    _operators = {
        # operator => lambda column, value, matcher
        OperatorKind.EQ:  lambda col, val, m: col == val,
        OperatorKind.IEQ: lambda col, val, m: col == None if val is None else m.equals(col, val),
        OperatorKind.NEQ: lambda col, val, m: col.is_distinct_from(val),  # (see comment below)
        OperatorKind.GT:  lambda col, val, m: col > val,
        OperatorKind.GTE: lambda col, val, m: col >= val,
        OperatorKind.LT:  lambda col, val, m: col < val,
        OperatorKind.LTE: lambda col, val, m: col <= val,
        OperatorKind.IN:  lambda col, val, m: col.in_(val),
        OperatorKind.NOT_IN: lambda col, val, m: col.not_in(val),
        OperatorKind.LIKE: lambda col, val, m: col.like(val, escape=LIKE_ESCAPE),
        OperatorKind.NOT_LIKE: lambda col, val, m: col.not_like(val, escape=LIKE_ESCAPE),
        OperatorKind.ILIKE: lambda col, val, m: m.like(col, val),
        OperatorKind.NOT_ILIKE: lambda col, val, m: m.not_like(col, val),

        # Note on NEQ:
        # We can't actually use '!=' here, because with nullable columns, it will give unexpected results.
        # {'name': {'neq': 'brad'}} won't select a User(name=None),
        # because a '!=' comparison with NULL is... NULL, which is a false value.
    }

    def __init__(self, session: Session, catalog: SqlAlchemyCatalog, matcher: Optional[CaseInsensitiveMatcher] = None):
        """ Init the executor

        :param session: The session to run queries with
        :param catalog: Catalog of the models
        :param matcher: Case-insensitive matching. Default: the one for the session's dialect
        """
        self.session = session
        self.catalog = catalog
        self.matcher = matcher or matcher_for_dialect(session.get_bind().dialect.name)

    def run(self, plan: ExecutionPlan) -> ExecutionResult:
        query = CountingQuery(self.query(plan.consume()))
        rows = [self.serialize(plan.entity, obj, plan.includes) for obj in query]
        return ExecutionResult(rows, query.count)

    def query(self, plan: ExecutionPlan) -> Query:
        """ Build a Query for the plan """
        model = self.catalog.model(plan.entity)
        q = self.session.query(model)

        # Filter
        if not plan.filter.is_always_true:
            q = q.filter(self.compile_predicate(model, plan.predicate))

        # Order
        q = self._order_by(q, model, plan.order)

        # Load
        q = q.options(*self._loader_options(model, plan.includes))

        # Paging
        q = q.limit(plan.limit)
        if plan.offset:
            q = q.offset(plan.offset)
        return q

    # region Filter

    def compile_predicate(self, model, predicate: Predicate):
        """ Compile a predicate into an SqlAlchemy expression """
        if isinstance(predicate, Clause):
            if predicate.field.foreign_key:
                return self._compile_foreign_key_clause(model, predicate)
            return self._compile_clause(model, predicate.field.join_alias_chain, predicate)

        if not predicate.children:
            return true()
        criteria = [self.compile_predicate(model, c) for c in predicate.children]
        cc = and_(*criteria) if predicate.op == BoolOp.AND else or_(*criteria)
        # Put parentheses around it when there are multiple clauses
        return cc.self_group() if len(criteria) > 1 else cc

    def _compile_clause(self, model, alias_chain, clause: Clause):
        # Own column
        if not alias_chain:
            column = getattr(model, clause.field.column)
            return self._operators[clause.kind](column, clause.value, self.matcher)

        # Related column: EXISTS()
        relationship = getattr(model, alias_chain[0])
        target = relationship.property.mapper.class_
        criterion = self._compile_clause(target, alias_chain[1:], clause)
        if relationship.property.uselist:
            return relationship.any(criterion)
        else:
            return relationship.has(criterion)

    #: Negated operators: a NULL foreign key matches them
    _null_foreign_key_matches = frozenset([
        OperatorKind.NEQ,
        OperatorKind.NOT_IN,
        OperatorKind.NOT_LIKE,
        OperatorKind.NOT_ILIKE,
    ])

    def _compile_foreign_key_clause(self, model, clause: Clause):
        """ Compile a clause on the external id behind a belongs-to foreign key

            A row with a NULL foreign key has no related row, so EXISTS() alone would never match it.
            The API user sees `owner_id: null` in such a row, and expects it to be filtered as a NULL.
        """
        foreign_key = getattr(model, clause.field.foreign_key)

        # {owner_id: null}
        if clause.value is None:
            if clause.kind == OperatorKind.NEQ:
                return foreign_key.is_not(None)
            return foreign_key.is_(None)

        criterion = self._compile_clause(model, clause.field.join_alias_chain, clause)
        if clause.kind in self._null_foreign_key_matches:
            return or_(foreign_key.is_(None), criterion).self_group()
        return criterion

    # endregion

    # region Order

    def _order_by(self, q: Query, model, order) -> Query:
        joined = {}  # alias chain => aliased model
        columns = []
        for o in order:
            target = model
            if o.ref.join_alias_chain:
                q, target = self._outerjoin(q, model, o.ref.join_alias_chain, joined)
            column = getattr(target, o.ref.column)
            columns.append(column.desc() if o.direction == Direction.DESC else column.asc())
        return q.order_by(*columns)

    @staticmethod
    def _outerjoin(q: Query, model, alias_chain, joined: dict):
        """ LEFT JOIN a chain of relations, once """
        parent = model
        for i, alias in enumerate(alias_chain):
            path = alias_chain[:i + 1]
            if path not in joined:
                relationship = getattr(parent, alias)
                target = aliased(relationship.property.mapper.class_)
                q = q.outerjoin(relationship.of_type(target))
                joined[path] = target
            parent = joined[path]
        return q, parent

    # endregion

    # region Load

    def _loader_options(self, model, includes: Iterable[Include], parent=None):
        """ selectinload() every include; one option per leaf """
        for include in includes:
            relationship = getattr(model, include.alias)
            loader = selectinload(relationship) if parent is None else parent.selectinload(relationship)
            if include.includes:
                yield from self._loader_options(relationship.property.mapper.class_, include.includes, loader)
            else:
                yield loader

    def serialize(self, entity: str, obj, includes: Iterable[Include]) -> dict:
        """ Convert an instance into a dict: its columns, and included relations """
        row = {name: getattr(obj, name) for name in self.catalog.columns(entity)}
        for include in includes:
            value = getattr(obj, include.alias)
            if include.many:
                row[include.alias] = [self.serialize(include.target_entity, o, include.includes) for o in value]
            else:
                row[include.alias] = None if value is None else self.serialize(include.target_entity, value, include.includes)
        return row

    # endregion


class SqlAlchemyLookupStore(LookupStore):
    """ Looks up external ids with SqlAlchemy: one `SELECT pk, external_id ... WHERE pk IN (...)` per call """

    def __init__(self, session_factory: Callable[[], Session], catalog: SqlAlchemyCatalog):
        """ Init the store

        :param session_factory: Makes a new Session for every lookup, e.g. a `sessionmaker`
        :param catalog: Catalog of the models
        """
        self.session_factory = session_factory
        self.catalog = catalog

    def batch_find(self, entity, pk_field, external_field, values):
        model = self.catalog.model(entity)
        pk = getattr(model, pk_field)
        external = getattr(model, external_field)

        ssn = self.session_factory()
        try:
            rows = ssn.query(pk, external).filter(pk.in_(values)).all()
        finally:
            ssn.close()
        return {pk_value: external_value for pk_value, external_value in rows}
