from concurrent.futures import Executor
from logging import getLogger
from typing import FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from .exc import BaseFilterSqlException, ValidationError, MalformedSpecError
from .flatten import Flattening
from .handlers import PredicateBuilder, OrderingBuilder, PaginationCalculator, OrderSpec, Pagination
from .operators import default_registry
from .policy import Policy
from .predicate import FilterContext, Predicate, RequiredJoin
from .projector import ForeignKeyProjector, LookupStore, DictLookupStore
from .querystring import parse_querystring
from .schema import SchemaCatalog, IncludeGraph, ForeignKeyMapping
from .util import QuerySettingsDict

logger = getLogger(__name__)


class ExecutionPlan:
    """ Everything an executor needs to run the query

        A plan is consumed exactly once: `consume()` refuses to give it away twice.
    """

    __slots__ = ('entity', 'filter', 'order', 'pagination', 'includes', 'required_joins', 'filters_echo', '_consumed')

    def __init__(self,
                 entity: str,
                 filter: FilterContext,
                 order: Tuple[OrderSpec, ...],
                 pagination: Pagination,
                 includes: IncludeGraph,
                 required_joins: FrozenSet[RequiredJoin],
                 filters_echo=None):
        self.entity = entity
        self.filter = filter
        self.order = order
        self.pagination = pagination
        self.includes = includes
        self.required_joins = required_joins
        #: The filters, as the user has provided them
        self.filters_echo = filters_echo
        self._consumed = False

    def __repr__(self):
        return '{}({!r}, filter={!r}, order={!r}, limit={}, offset={})'.format(
            self.__class__.__name__, self.entity, self.predicate,
            [o.to_dict() for o in self.order], self.limit, self.offset)

    @property
    def predicate(self) -> Predicate:
        return self.filter.predicate

    @property
    def limit(self) -> int:
        return self.pagination.limit

    @property
    def offset(self) -> int:
        return self.pagination.offset

    @property
    def page(self) -> int:
        return self.pagination.page

    @property
    def size(self) -> int:
        return self.pagination.size

    def consume(self) -> 'ExecutionPlan':
        """ Mark the plan as executed

        :raises RuntimeError: the plan has already been executed
        """
        if self._consumed:
            raise RuntimeError('This ExecutionPlan has already been executed. Compile a new one.')
        self._consumed = True
        return self


class ExecutionResult(NamedTuple):
    """ What an executor gives back: a page of rows, and the total number of matching rows """
    rows: List[dict]
    total_count: int


class QueryExecutor:
    """ Runs ExecutionPlans against the storage """

    def run(self, plan: ExecutionPlan) -> ExecutionResult:
        raise NotImplementedError


class QueryAssembler:
    """ Compiles requests for one entity into ExecutionPlans, and results into response envelopes

        Example:

            qa = QueryAssembler('Product', catalog, dict(default_page_size=20, includes=['owner']))

            # Compile & run yourself
            plan = qa.compile({'filtering': {'category': 'electronics'}, 'paging': {'page': 2}})
            result = executor.run(plan)
            envelope = qa.respond(plan, result, lookup_store)

            # Or let it do everything, including error handling
            envelope, status = qa.execute(executor, body, lookup_store=lookup_store)

        The assembler only holds configuration: it can serve any number of requests.
    """

    def __init__(self, entity: str, catalog: SchemaCatalog, settings: Optional[Mapping] = None):
        """ Init the assembler

        :param entity: The entity to query
        :param catalog: Schema catalog
        :param settings: QuerySettingsDict, or a dict with the same keys
        :raises TypeError: unknown setting
        """
        self.entity = entity
        self.catalog = catalog
        self.settings = settings = QuerySettingsDict(**(settings or {}))

        # Operators
        self.registry = default_registry.extended(*settings['operators']) if settings['operators'] else default_registry

        # Fields
        self.id_mapping = settings['id_mapping']
        self.fk_mappings = tuple(self._init_fk_mapping(m) for m in settings['relation_id_mapping'] or ())
        self.flattening = Flattening(settings['flattening'])

        # Policies
        self.filtering_policy = Policy(settings['allow_filtering_on'], settings['block_filtering_on'], settings['field_aliases'])
        self.ordering_policy = Policy(settings['allow_ordering_on'], settings['block_ordering_on'], settings['field_aliases'])

        # Includes: configured ones, and those required by flattening
        includes = IncludeGraph.parse(catalog, entity, settings['includes'])
        for alias in self.flattening.aliases():
            includes = includes.with_path(catalog, (alias,))
        self.includes = includes

        # Validate force_filter
        if settings['force_filter'] is not None:
            self._filter_compiler(self.includes).compile(settings['force_filter'], check_policy=False)

    def _init_fk_mapping(self, config: Union[ForeignKeyMapping, Mapping, tuple]) -> ForeignKeyMapping:
        """ Get a ForeignKeyMapping from `relation_id_mapping` config """
        if isinstance(config, ForeignKeyMapping):
            return config
        if isinstance(config, tuple):
            return ForeignKeyMapping(*config)
        entity = config['entity']
        return ForeignKeyMapping(
            entity=entity,
            internal_pk_field=config.get('pk_field') or self.catalog.primary_key(entity),
            external_id_field=config['id_field'],
        )

    def _resolver_kwargs(self) -> dict:
        return dict(id_mapping=self.id_mapping, relation_id_mapping=self.fk_mappings, flattening=self.flattening)

    def _filter_compiler(self, includes: IncludeGraph) -> PredicateBuilder:
        return PredicateBuilder(self.catalog, self.entity, includes, self.filtering_policy,
                                registry=self.registry, **self._resolver_kwargs())

    def _order_compiler(self, includes: IncludeGraph) -> OrderingBuilder:
        return OrderingBuilder(self.catalog, self.entity, includes, self.ordering_policy,
                               default_order_by=self.settings['default_order_by'],
                               default_order_dir=self.settings['default_order_dir'],
                               **self._resolver_kwargs())

    def _pagination_calculator(self) -> PaginationCalculator:
        return PaginationCalculator(self.settings['default_page_size'],
                                    self.catalog.entity_options(self.entity).get('page_size'),
                                    self.settings['max_page_size'])

    # region Compile

    def compile(self, body: Optional[dict] = None, includes=None) -> ExecutionPlan:
        """ Compile a request body: {filtering, ordering, paging}

        :param body: Request body
        :param includes: Additional relations to include: same format as the `includes` setting
        :raises ValidationError: invalid request
        """
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise MalformedSpecError('request body must be an object; {} provided'.format(type(body).__name__))

        return self._compile(
            filtering=body.get('filtering'),
            ordering=body.get('ordering'),
            order_dir=None,
            paging=body.get('paging'),
            includes=includes,
            filters_echo=body.get('filtering'),
        )

    def compile_querystring(self, params, includes=None) -> ExecutionPlan:
        """ Compile query string parameters

        :param params: Query string: a string, a dict, a multi-dict, or a list of pairs
        :param includes: Additional relations to include
        :raises ValidationError: invalid request
        """
        qs = parse_querystring(params, self.settings['querystring_prefix'])
        return self._compile(
            filtering=qs.filtering,
            ordering=qs.ordering,
            order_dir=qs.order_dir,
            paging=qs.paging,
            includes=includes,
            filters_echo=qs.filters_echo,
        )

    def _compile(self, filtering, ordering, order_dir, paging, includes, filters_echo) -> ExecutionPlan:
        # Pagination
        pagination = self._pagination_calculator().compile(paging)

        # Includes
        graph = self.includes
        if includes:
            graph = graph.merge(IncludeGraph.parse(self.catalog, self.entity, includes))

        # Filtering
        filter_compiler = self._filter_compiler(graph)
        if self.settings['allow_filtering']:
            filter_ctx = filter_compiler.compile(filtering)
        else:
            filter_ctx, filters_echo = FilterContext(), None
        if self.settings['force_filter'] is not None:
            filter_ctx = filter_ctx.and_(filter_compiler.compile(self.settings['force_filter'], check_policy=False))

        # Ordering
        ordering = self._order_compiler(graph).compile(
            ordering if self.settings['allow_ordering'] else None,
            order_dir if self.settings['allow_ordering'] else None,
        )

        return ExecutionPlan(
            entity=self.entity,
            filter=filter_ctx,
            order=ordering.order,
            pagination=pagination,
            includes=graph,
            required_joins=filter_ctx.required_joins | ordering.required_joins,
            filters_echo=filters_echo,
        )

    # endregion

    # region Respond

    def project(self, plan: ExecutionPlan, rows: Iterable[dict],
                lookup_store: Optional[LookupStore] = None,
                lookup_executor: Optional[Executor] = None) -> List[dict]:
        """ Post-process rows: external ids, flattening

        :raises LookupInfrastructureError: a lookup has failed
        """
        projector = ForeignKeyProjector(self.catalog, self.entity,
                                        lookup_store if lookup_store is not None else DictLookupStore({}),
                                        self.fk_mappings,
                                        includes=plan.includes,
                                        id_mapping=self.id_mapping,
                                        executor=lookup_executor)
        rows = projector.project(rows)
        if self.flattening:
            rows = self.flattening.flatten_rows(rows)
        return rows

    def respond(self, plan: ExecutionPlan, result: ExecutionResult,
                lookup_store: Optional[LookupStore] = None,
                lookup_executor: Optional[Executor] = None) -> dict:
        """ Build the response envelope for an executed plan

        :raises LookupInfrastructureError: a lookup has failed
        """
        rows = self.project(plan, result.rows, lookup_store, lookup_executor)

        meta = {
            'page': plan.page,
            'page_size': plan.size,
            'total_pages': plan.pagination.total_pages(result.total_count),
            'count': result.total_count,
        }
        if self.settings['meta_show_ordering']:
            meta['order'] = [o.to_dict() for o in plan.order]
        if self.settings['meta_show_filters']:
            meta['filters'] = plan.filters_echo or {}

        return {'success': True, 'data': rows, 'meta': meta}

    @staticmethod
    def error_response(e: BaseFilterSqlException) -> dict:
        """ Build the response envelope for an error. Details are never exposed. """
        return {'success': False, 'error': e.public_message}

    # endregion

    # region Execute

    def execute(self, executor: QueryExecutor, body: Optional[dict] = None, includes=None,
                lookup_store: Optional[LookupStore] = None,
                lookup_executor: Optional[Executor] = None) -> Tuple[dict, int]:
        """ Compile a request body, run it, and build the response

        :return: (envelope, HTTP status code)
        """
        return self._execute(lambda: self.compile(body, includes), executor, lookup_store, lookup_executor)

    def execute_querystring(self, executor: QueryExecutor, params, includes=None,
                            lookup_store: Optional[LookupStore] = None,
                            lookup_executor: Optional[Executor] = None) -> Tuple[dict, int]:
        """ Compile query string parameters, run them, and build the response

        :return: (envelope, HTTP status code)
        """
        return self._execute(lambda: self.compile_querystring(params, includes), executor, lookup_store, lookup_executor)

    def _execute(self, compile, executor, lookup_store, lookup_executor):
        try:
            plan = compile()
            result = executor.run(plan)
            return self.respond(plan, result, lookup_store, lookup_executor), 200
        except ValidationError as e:
            logger.debug('Bad request for %s: %s', self.entity, e)
            return self.error_response(e), e.status_code
        except BaseFilterSqlException as e:
            logger.exception('Failed to query %s', self.entity)
            return self.error_response(e), e.status_code

    # endregion
