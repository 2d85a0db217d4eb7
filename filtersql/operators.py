""" Operator registry: tokens, their canonical kinds, and how values are prepared for them

Every operator token (`gte`, `icontains`, `not_in`, ...) maps to an `OperatorSpec`:
the canonical `OperatorKind` an executor has to implement, a value transform,
and restrictions on the column types it can be used with.

Values are validated against the column type and normalized into proper Python types:
"100" for an integer column becomes 100, "2024-01-02" for a date column becomes a `date`, etc.
Values that can't be interpreted are rejected with `TypeMismatchError`: they are never
silently turned into something else.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, NamedTuple, Optional

from .exc import TypeMismatchError
from .schema import ColumnType


class OperatorKind(Enum):
    """ Canonical operators that an executor has to implement """
    EQ = 'eq'
    IEQ = 'ieq'  # case-insensitive equality
    NEQ = 'neq'
    GT = 'gt'
    GTE = 'gte'
    LT = 'lt'
    LTE = 'lte'
    IN = 'in'
    NOT_IN = 'not_in'
    LIKE = 'like'
    ILIKE = 'ilike'
    NOT_LIKE = 'not_like'
    NOT_ILIKE = 'not_ilike'


#: The escape character used in LIKE patterns
LIKE_ESCAPE = '\\'

#: Tokens accepted as booleans
BOOLEAN_TOKENS = {
    'true': True, '1': True, 'yes': True,
    'false': False, '0': False, 'no': False,
}


def escape_like(value: str) -> str:
    """ Escape LIKE wildcards in a value, so that they're matched literally """
    return (value
            .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
            .replace('%', LIKE_ESCAPE + '%')
            .replace('_', LIKE_ESCAPE + '_'))


def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


# region Value coercion

def _to_integer(value):
    if isinstance(value, bool):
        raise ValueError('an integer is expected, got a boolean')
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError('an integer is expected')
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError('an integer is expected')
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError('an integer is expected')


def _to_decimal(value):
    if isinstance(value, bool):
        raise ValueError('a number is expected, got a boolean')
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal, str)):
        number = float(value.strip() if isinstance(value, str) else value)
        if not math.isfinite(number):
            raise ValueError('a finite number is expected')
        return number
    raise ValueError('a number is expected')


def _to_boolean(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in BOOLEAN_TOKENS:
        return BOOLEAN_TOKENS[value.strip().lower()]
    raise ValueError('a boolean is expected: one of true, false, 1, 0, yes, no')


def _parse_datetime(value: str) -> datetime:
    value = value.strip()
    # fromisoformat() did not understand the "Z" suffix before Python 3.11
    if value.endswith(('Z', 'z')):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)


def _to_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return _parse_datetime(value).date()
    raise ValueError('an ISO-8601 date is expected')


def _to_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return _parse_datetime(value)
    raise ValueError('an ISO-8601 date is expected')


def _to_text(value):
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    raise ValueError('a string is expected')


def _to_other(value):
    if isinstance(value, dict) or _is_array(value):
        raise ValueError('a scalar value is expected')
    return value


_COERCERS = {
    ColumnType.INTEGER: _to_integer,
    ColumnType.DECIMAL: _to_decimal,
    ColumnType.BOOLEAN: _to_boolean,
    ColumnType.DATE: _to_date,
    ColumnType.DATETIME: _to_datetime,
    ColumnType.TEXT: _to_text,
    ColumnType.OTHER: _to_other,
}


def coerce_value(column_type: ColumnType, value):
    """ Validate a scalar value against the column type and convert it to a proper Python type

    :raises ValueError: the value is not compatible with the column type
    """
    return _COERCERS[column_type](value)

# endregion


def split_list(value):
    """ Get a list of values from a list, or from a comma-separated string """
    if _is_array(value):
        return list(value)
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return [value]


class OperatorSpec(NamedTuple):
    """ An operator: its token, its canonical kind, and how the value is prepared """
    token: str
    kind: OperatorKind
    #: Pattern transform for text operators, e.g. lambda v: '%' + v + '%'
    transform: Optional[Callable[[str], str]] = None
    #: Only usable with textual columns
    requires_text: bool = False
    #: Only usable with boolean columns
    requires_boolean: bool = False
    #: Takes a list of values (`in`, `not_in`)
    list_value: bool = False
    #: A fixed value that replaces whatever the user has provided (`is_true`, `is_false`)
    literal: Optional[bool] = None
    #: Accepts `None` (to compare with NULL)
    nullable: bool = False

    def prepare_value(self, field: str, column_type: ColumnType, value):
        """ Validate the value and convert it into what the executor will bind

        :param field: The field name as the user has provided it (for error messages)
        :raises TypeMismatchError: the operator can't be used with this column or value
        """
        if self.requires_text and column_type != ColumnType.TEXT:
            raise TypeMismatchError(field, self.token, value, 'operator can only be used with text columns')
        if self.requires_boolean and column_type != ColumnType.BOOLEAN:
            raise TypeMismatchError(field, self.token, value, 'operator can only be used with boolean columns')

        # Literals: value ignored
        if self.literal is not None:
            return self.literal

        try:
            # NULL
            if value is None:
                if self.nullable:
                    return None
                raise ValueError('a value is required')

            # List
            if self.list_value:
                return tuple(coerce_value(column_type, v) for v in split_list(value))

            # Scalar
            if _is_array(value) or isinstance(value, dict):
                raise ValueError('a scalar value is expected')
            value = coerce_value(column_type, value)

            # Pattern
            if self.transform is not None:
                value = self.transform(escape_like(value))
            return value
        except (ValueError, TypeError, ArithmeticError) as e:
            raise TypeMismatchError(field, self.token, value, str(e)) from e


_contains = lambda v: '%' + v + '%'
_starts_with = lambda v: v + '%'
_ends_with = lambda v: '%' + v


DEFAULT_OPERATORS = (
    # Comparison
    OperatorSpec('eq', OperatorKind.EQ, nullable=True),
    OperatorSpec('ieq', OperatorKind.IEQ, requires_text=True, nullable=True),
    OperatorSpec('neq', OperatorKind.NEQ, nullable=True),
    OperatorSpec('gt', OperatorKind.GT),
    OperatorSpec('gte', OperatorKind.GTE),
    OperatorSpec('lt', OperatorKind.LT),
    OperatorSpec('lte', OperatorKind.LTE),
    # Symbolic aliases
    OperatorSpec('=', OperatorKind.EQ, nullable=True),
    OperatorSpec('!=', OperatorKind.NEQ, nullable=True),
    OperatorSpec('>', OperatorKind.GT),
    OperatorSpec('>=', OperatorKind.GTE),
    OperatorSpec('<', OperatorKind.LT),
    OperatorSpec('<=', OperatorKind.LTE),
    # Membership
    OperatorSpec('in', OperatorKind.IN, list_value=True),
    OperatorSpec('not_in', OperatorKind.NOT_IN, list_value=True),
    # Text
    OperatorSpec('contains', OperatorKind.LIKE, _contains, requires_text=True),
    OperatorSpec('icontains', OperatorKind.ILIKE, _contains, requires_text=True),
    OperatorSpec('not_contains', OperatorKind.NOT_LIKE, _contains, requires_text=True),
    OperatorSpec('not_icontains', OperatorKind.NOT_ILIKE, _contains, requires_text=True),
    OperatorSpec('starts_with', OperatorKind.LIKE, _starts_with, requires_text=True),
    OperatorSpec('istarts_with', OperatorKind.ILIKE, _starts_with, requires_text=True),
    OperatorSpec('not_starts_with', OperatorKind.NOT_LIKE, _starts_with, requires_text=True),
    OperatorSpec('not_istarts_with', OperatorKind.NOT_ILIKE, _starts_with, requires_text=True),
    OperatorSpec('ends_with', OperatorKind.LIKE, _ends_with, requires_text=True),
    OperatorSpec('iends_with', OperatorKind.ILIKE, _ends_with, requires_text=True),
    OperatorSpec('not_ends_with', OperatorKind.NOT_LIKE, _ends_with, requires_text=True),
    OperatorSpec('not_iends_with', OperatorKind.NOT_ILIKE, _ends_with, requires_text=True),
    # Boolean
    OperatorSpec('is_true', OperatorKind.EQ, requires_boolean=True, literal=True),
    OperatorSpec('is_false', OperatorKind.EQ, requires_boolean=True, literal=False),
)


class OperatorRegistry:
    """ A table of operators, by token

        The default registry is shared; use `extended()` to get a registry with more operators.
    """

    __slots__ = ('_operators',)

    def __init__(self, operators: Iterable[OperatorSpec] = DEFAULT_OPERATORS):
        self._operators = {op.token: op for op in operators}

    def __contains__(self, token):
        return token in self._operators

    def __iter__(self):
        return iter(self._operators.values())

    def get(self, token: str) -> Optional[OperatorSpec]:
        return self._operators.get(token)

    def extended(self, *operators: OperatorSpec) -> 'OperatorRegistry':
        """ Get a new registry with additional operators (overriding ones with the same token) """
        return OperatorRegistry(list(self._operators.values()) + list(operators))

    def default_for(self, column_type: ColumnType, value) -> OperatorSpec:
        """ Get the operator for a bare value: `{field: value}`

            * A list means "any of": `in`
            * A text column is matched case-insensitively: `ieq`
            * Anything else is strict equality: `eq`, and `null` is `IS NULL`
        """
        if _is_array(value):
            return self._operators['in']
        if column_type == ColumnType.TEXT and value is not None:
            return self._operators['ieq']
        return self._operators['eq']


default_registry = OperatorRegistry()
