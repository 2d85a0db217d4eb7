from typing import Iterable, Mapping, Union


class QuerySettingsDict(dict):
    """ QueryAssembler settings container.

        Is only used for nice autocompletion and documentation purposes only! :)
        A plain dict with the same keys works just as well.

        However... it may allow custom tweaks for configurations, if you override it:
        e.g. default values shared by all your entities.

        Unknown keys are an error: a typo in a security setting should never go unnoticed.
    """

    def __init__(self,
                 # --- paging
                 default_page_size: int = 100,
                 max_page_size: int = None,
                 # --- ordering
                 default_order_by: str = 'id',
                 default_order_dir: str = 'ASC',
                 allow_ordering: bool = True,
                 allow_ordering_on: Iterable[str] = None,
                 block_ordering_on: Iterable[str] = None,
                 # --- filtering
                 allow_filtering: bool = True,
                 allow_filtering_on: Iterable[str] = None,
                 block_filtering_on: Iterable[str] = None,
                 force_filter: dict = None,
                 operators: Iterable = None,
                 # --- fields
                 field_aliases: Mapping[str, str] = None,
                 id_mapping: str = None,
                 relation_id_mapping: Iterable[Union[dict, tuple]] = None,
                 # --- relations
                 includes: Union[str, list, dict] = None,
                 flattening: Union[dict, list] = None,
                 # --- response
                 meta_show_filters: bool = False,
                 meta_show_ordering: bool = False,
                 # --- query string
                 querystring_prefix: str = '',
                 ):
        """ `QueryAssembler` has plenty of settings that let you configure the way queries are made,
        to fine-tune their security limitations, and to implement some custom behaviors.

        Example:
            ```python
            from filtersql import QueryAssembler, QuerySettingsDict

            qa = QueryAssembler('Product', catalog, QuerySettingsDict(
                default_page_size=20,
                allow_filtering_on=('name', 'price', 'owner.email'),
                block_ordering_on=('secret_score',),
                includes=['owner'],
                relation_id_mapping=[dict(entity='User', id_field='external_id')],
            ))
            ```

        Args:
            default_page_size (int): (for: paging)
                Page size when the user gives none. An entity-level `page_size` option overrides it.
            max_page_size (int | None): (for: paging)
                The maximum page size. The user can never go any higher than that.
            default_order_by (str): (for: ordering)
                The column to order by when no ordering is given. An entity-level `order_by` overrides it.
            default_order_dir (str): (for: ordering)
                'ASC' or 'DESC': the direction for the default column, and for columns given without one.
                An entity-level `order_dir` overrides it.
            allow_ordering (bool): (for: ordering)
                When `False`, user-provided ordering is ignored, and the default ordering is used.
            allow_ordering_on (list[str] | None): (for: ordering)
                An explicit list of fields that can be used for ordering. An empty list allows nothing.
            block_ordering_on (list[str] | None): (for: ordering)
                A list of fields that can never be used for ordering. Wins over `allow_ordering_on`.
            allow_filtering (bool): (for: filtering)
                When `False`, user-provided filters are ignored. `force_filter` still applies.
            allow_filtering_on (list[str] | None): (for: filtering)
                An explicit list of fields that can be used for filtering. An empty list allows nothing.
            block_filtering_on (list[str] | None): (for: filtering)
                A list of fields that can never be used for filtering. Wins over `allow_filtering_on`.
            force_filter (dict | None): (for: filtering)
                A filter that is ANDed to every request. It is not subject to the filtering policy.
            operators (list[OperatorSpec] | None): (for: filtering)
                Additional operators to recognize.
            field_aliases (dict[str, str] | None): (for: filtering, ordering)
                Public field names mapped to internal ones: {'name': 'person_name'}
            id_mapping (str | None): (for: everything)
                The column that is exposed as the entity's `id`: filtering and ordering by `id` use it,
                and the response has it renamed into `id`.
            relation_id_mapping (list[dict] | None): (for: everything)
                External identifiers of related entities: [{'entity': 'User', 'id_field': 'external_id'}].
                `pk_field` can be given as well; default: the primary key.
                Foreign keys to these entities are replaced with external ids in the response,
                and filtering by them uses external ids.
            includes (str | list | dict | None): (for: everything)
                Relations to load with every row: ['owner', {'owner': ['company']}].
                Fields of included relations can be used for filtering and ordering.
            flattening (dict | list[dict] | None): (for: everything)
                Attributes of included relations lifted to the top level of every row:
                [{'as': 'owner', 'attributes': ['email', ('name', 'owner_name')]}]
            meta_show_filters (bool): (for: response)
                Echo the applied filters in `meta.filters`
            meta_show_ordering (bool): (for: response)
                Echo the applied ordering in `meta.order`
            querystring_prefix (str): (for: query string)
                Prefix for control parameters: with 'api:', paging is `api:page`, `api:page_size`,
                and ordering is `api:order_by`, `api:order_dir`.
        """
        super(QuerySettingsDict, self).__init__()
        self.update({k: v  # one entry per keyword argument
                     for k, v in locals().items()
                     if k not in {'__class__', 'self'}})

    def and_more(self, **settings):
        """ Copy the object and add more settings to it """
        return self.__class__(**{**self, **settings})
