
class BaseMongoMemException(Exception):
    pass


class InvalidSpecError(BaseMongoMemException):
    """ Invalid input provided by the User: a filter, a projection, a pipeline stage, ... """

    def __init__(self, err: str):
        super(InvalidSpecError, self).__init__('Query object error: {err}'.format(err=err))


class DisabledError(InvalidSpecError):
    """ The feature is disabled """


class InvalidDocumentError(InvalidSpecError):
    """ A document can't be stored: not a mapping, or has values of unsupported types """


class NotFoundError(BaseMongoMemException, LookupError):
    """ Referenced a collection, an index, or a document that does not exist """

    def __init__(self, kind: str, name):
        self.kind = kind
        self.name = name

        super(NotFoundError, self).__init__(
            'Unknown {kind}: {name!r}'.format(kind=kind, name=name)
        )


class TypeMismatchError(BaseMongoMemException, TypeError):
    """ A comparison or arithmetic between values of incompatible types """

    def __init__(self, operator: str, value, expected: str):
        self.operator = operator
        self.value = value
        self.expected = expected

        super(TypeMismatchError, self).__init__(
            '{operator}: expected {expected}, got {type} ({value!r})'.format(
                operator=operator,
                expected=expected,
                type=type(value).__name__,
                value=value)
        )


class DuplicateKeyError(BaseMongoMemException):
    """ Insert or update would violate a unique index (including the one on `_id`) """

    def __init__(self, collection_name: str, index_name: str, key):
        self.collection_name = collection_name
        self.index_name = index_name
        self.key = key

        super(DuplicateKeyError, self).__init__(
            'Duplicate key in "{collection}" index "{index}": {key!r}'.format(
                collection=collection_name,
                index=index_name,
                key=key)
        )
