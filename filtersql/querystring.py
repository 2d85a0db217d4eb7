"""
### Query string grammar

Everything a request body can do, a query string can do too:

* `field=value`: equality (implicit AND): `?category=electronics&in_stock=true`
* `field:operator=value`: explicit operator: `?price:gte=100&price:lte=500`.
    The last colon separates the operator, so field names may have colons in them.
* `field:in=a,b,c`: comma-separated values for `in` and `not_in`
* `order_by=-price,name`: ordering: `-` for `DESC`, `+` for `ASC`
* `order_dir=DESC`: the direction for ordering columns that don't have a prefix
* `page=2&page_size=20`: paging

Control parameters can be given a prefix (setting: `querystring_prefix`),
so that they never clash with field names: `api:page`, `api:order_by`.
With a prefix, all other prefixed parameters are ignored.

A parameter given twice applies twice: `?tag=a&tag=b` is `tag=a AND tag=b`.
"""

from typing import Iterable, List, NamedTuple, Optional, Tuple, Union, Mapping
from urllib.parse import parse_qsl

#: Control parameters, without the prefix
CONTROL_PARAMS = ('page', 'page_size', 'order_by', 'order_dir')


class QueryStringRequest(NamedTuple):
    """ A query string, parsed into the request body form """
    filtering: Optional[dict]
    ordering: Optional[str]
    order_dir: Optional[str]
    paging: dict
    #: The filters in `field:operator` form, for echoing back to the user
    filters_echo: dict


def _items(params) -> List[Tuple[str, str]]:
    """ Get (key, value) pairs from whatever a web framework gives us

        Supports: a raw query string, a dict (values may be lists), a list of pairs,
        and multi-dicts that have `.items(multi=True)`
    """
    if isinstance(params, str):
        return parse_qsl(params.lstrip('?'), keep_blank_values=True)
    if hasattr(params, 'items'):
        try:
            items = params.items(multi=True)
        except TypeError:
            items = params.items()
        result = []
        for key, value in items:
            if isinstance(value, (list, tuple)):
                result.extend((key, v) for v in value)
            else:
                result.append((key, value))
        return result
    return list(params)


def _filter_node(field: str, operator: Optional[str], value) -> dict:
    return {field: value} if not operator else {field: {operator: value}}


def parse_querystring(params: Union[str, Mapping, Iterable[Tuple[str, str]]], prefix: str = '') -> QueryStringRequest:
    """ Parse query string parameters

    :param params: Query string parameters: a string, a dict, a multi-dict, or a list of pairs
    :param prefix: Prefix for control parameters
    :rtype: QueryStringRequest
    """
    control = {prefix + name: name for name in CONTROL_PARAMS}
    values = {}
    conditions = []  # list of (key, field, operator, value)

    for key, value in _items(params):
        # Control parameters
        if key in control:
            values[control[key]] = value
            continue
        # Other prefixed parameters are ignored
        if prefix and key.startswith(prefix):
            continue

        # Filter: `field` or `field:operator`
        field, sep, operator = key.rpartition(':')
        if not sep:
            field, operator = key, None
        conditions.append((key, field, operator or None, value))

    # Filtering
    if not conditions:
        filtering = None
    elif len({field for _, field, _, _ in conditions}) == len(conditions):
        # Every field once: one object
        filtering = {}
        for _, field, operator, value in conditions:
            filtering.update(_filter_node(field, operator, value))
    else:
        # Some fields repeat: every condition on its own
        filtering = {'and': [_filter_node(field, operator, value)
                             for _, field, operator, value in conditions]}

    # Echo
    filters_echo = {}
    for key, _, _, value in conditions:
        if key in filters_echo:
            previous = filters_echo[key]
            filters_echo[key] = (previous if isinstance(previous, list) else [previous]) + [value]
        else:
            filters_echo[key] = value

    return QueryStringRequest(
        filtering=filtering,
        ordering=values.get('order_by') or None,
        order_dir=values.get('order_dir') or None,
        paging={'page': values.get('page'), 'size': values.get('page_size')},
        filters_echo=filters_echo,
    )
