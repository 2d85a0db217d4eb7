class BaseFilterSqlException(Exception):
    """ Base for every error raised by filtersql """

    #: HTTP status code that suits this error
    status_code = 500

    #: The message the API user gets to see. Details stay in the logs.
    public_message = 'Internal server error'


class ValidationError(BaseFilterSqlException):
    """ Invalid input provided by the User

        All validation errors are reported to the API user as a generic "Bad request":
        the details are for internal diagnostics only and should never leak the schema.
    """
    status_code = 400
    public_message = 'Bad request'


class MalformedSpecError(ValidationError):
    """ Structurally invalid filter, ordering or paging specification """

    def __init__(self, err: str):
        super(MalformedSpecError, self).__init__('Query object error: {err}'.format(err=err))


class UnknownFieldError(ValidationError):
    """ Query mentioned a field that can't be resolved """

    def __init__(self, entity: str, field: str, where: str):
        self.entity = entity
        self.field = field
        self.where = where

        super(UnknownFieldError, self).__init__(
            'Invalid field "{field}" for "{entity}" specified in {where}'.format(
                field=field,
                entity=entity,
                where=where)
        )


class UnknownRelationError(UnknownFieldError):
    """ Query mentioned a relation that does not exist or was not included """

    def __init__(self, entity: str, field: str, where: str):
        self.entity = entity
        self.field = field
        self.where = where

        super(UnknownFieldError, self).__init__(
            'Invalid relation "{field}" for "{entity}" specified in {where}'.format(
                field=field,
                entity=entity,
                where=where)
        )


class UnknownOperatorError(ValidationError):
    """ Query used an operator that is not in the registry """

    def __init__(self, field: str, operator: str):
        self.field = field
        self.operator = operator

        super(UnknownOperatorError, self).__init__(
            'Unsupported operator "{operator}" used on field "{field}"'.format(
                operator=operator,
                field=field)
        )


class TypeMismatchError(ValidationError):
    """ The value is not compatible with the column type, or the operator can't be used with it """

    def __init__(self, field: str, operator: str, value, reason: str):
        self.field = field
        self.operator = operator
        self.value = value
        self.reason = reason

        super(TypeMismatchError, self).__init__(
            'Invalid value {value!r} for "{field}" with operator "{operator}": {reason}'.format(
                value=value,
                field=field,
                operator=operator,
                reason=reason)
        )


class PolicyViolationError(ValidationError):
    """ The field is not allowed to be used for this operation """

    def __init__(self, field: str, where: str):
        self.field = field
        self.where = where

        super(PolicyViolationError, self).__init__(
            'Field "{field}" is not allowed in {where}'.format(
                field=field,
                where=where)
        )


class InfrastructureError(BaseFilterSqlException):
    """ Something went wrong on our side: the request can't be completed """


class LookupInfrastructureError(InfrastructureError):
    """ A batched identifier lookup has failed

        This error augments the original one, which is available as `__cause__`
    """

    def __init__(self, entity: str, err: str):
        self.entity = entity

        super(LookupInfrastructureError, self).__init__(
            'Identifier lookup failed for "{entity}": {err}'.format(
                entity=entity,
                err=err)
        )
