"""
Documents are schema-less: a document is a `dict`, and every value in it belongs to one of a few *kinds*:

* `null`: `None` (and a field that is missing altogether)
* `number`: `int`, `float` (but not `bool`!)
* `string`: `str`
* `mapping`: a nested `dict`
* `array`: a `list` (or a `tuple`)
* `boolean`: `True`, `False`
* `datetime`: `datetime.datetime`

Kinds matter in two places:

1. Sorting. Values of different kinds still have to be sorted somehow, so kinds themselves are ordered:
    null < number < string < mapping < array < boolean < datetime.
    This is the order that MongoDB uses.
2. Comparison. Operators like `$gt` only compare values of the same kind ("type bracketing"):
    `{ age: { $gt: 18 } }` never matches `age: "20"`.
"""

import copy
import math
from datetime import datetime, timezone
from enum import IntEnum
from functools import total_ordering

from .exc import InvalidDocumentError, InvalidSpecError, TypeMismatchError


class Kind(IntEnum):
    """ Value kinds, in their sorting order """
    NULL = 1
    NUMBER = 2
    STRING = 3
    MAPPING = 4
    ARRAY = 5
    BOOLEAN = 6
    DATETIME = 7


class _Missing:
    """ A marker for a field that is not present in a document

        It's different from `None`: `{ a: None }` has the field, `{}` does not.
        When sorting, and when comparing with null, a missing field behaves like a null.
    """
    __slots__ = ()

    def __repr__(self):
        return 'MISSING'

    def __bool__(self):
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()


@total_ordering
class _NaNKey:
    """ Stands for NaN in sort keys: lower than any other number, and equal to itself

        NaN itself is neither less, nor greater, nor equal to anything: a list of them can't be sorted.
    """
    __slots__ = ()

    def __repr__(self):
        return 'NaN'

    def __eq__(self, other):
        return other is self

    def __lt__(self, other):
        return other is not self

    def __hash__(self):
        return hash('NaN')


NAN_KEY = _NaNKey()


def is_array(value):
    return isinstance(value, (list, tuple))


def is_number(value):
    # bool is a subclass of int. Not a number for us.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def kind_of(value) -> Kind:
    """ Get the kind of a value

        :raises TypeMismatchError: the value can't be stored in a document
    """
    if value is None or value is MISSING:
        return Kind.NULL
    # `bool` goes before numbers: isinstance(True, int) is True
    if isinstance(value, bool):
        return Kind.BOOLEAN
    if isinstance(value, (int, float)):
        return Kind.NUMBER
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, dict):
        return Kind.MAPPING
    if isinstance(value, (list, tuple)):
        return Kind.ARRAY
    if isinstance(value, datetime):
        return Kind.DATETIME
    raise TypeMismatchError('value', value, 'one of: null, number, string, object, array, boolean, datetime')


def sort_key(value) -> tuple:
    """ Get a key that orders any two values: first, by kind; then, by value

        Keys are hashable, so they also serve as dict keys for grouping:
        two values are considered equal if their keys are equal. Thus, 1 == 1.0, but True != 1.
        Note that a null key, `(Kind.NULL,)`, is also the lowest key of its kind bracket:
        `(kind,)` sorts before any `(kind, value)`.

        NaN is the lowest number, and equals itself.
        Timezone-aware datetimes are converted to UTC; naive ones are taken as UTC already.
    """
    kind = kind_of(value)
    if kind == Kind.NULL:
        return (kind,)
    elif kind == Kind.MAPPING:
        return (kind, tuple((k, sort_key(v)) for k, v in value.items()))
    elif kind == Kind.ARRAY:
        return (kind, tuple(sort_key(v) for v in value))
    elif kind == Kind.NUMBER and isinstance(value, float) and math.isnan(value):
        return (kind, NAN_KEY)
    elif kind == Kind.DATETIME and value.tzinfo is not None:
        return (kind, value.astimezone(timezone.utc).replace(tzinfo=None))
    else:
        return (kind, value)


@total_ordering
class Descending:
    """ Wraps a sort key and reverses its ordering

        Used for compound keys with mixed directions: e.g. (author ASC, published_year DESC)
    """

    __slots__ = ('key',)

    def __init__(self, key):
        self.key = key

    def __eq__(self, other):
        return isinstance(other, Descending) and self.key == other.key

    def __lt__(self, other):
        return other.key < self.key

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.key)


def directed_sort_key(value, direction: int):
    """ sort_key() that respects the sorting direction: +1 or -1 """
    key = sort_key(value)
    return key if direction == 1 else Descending(key)


def values_equal(a, b) -> bool:
    """ Test two values for equality, MongoDB style.

        * Numbers are compared by value: 1 == 1.0
        * Booleans are not numbers: True != 1
        * A missing field equals null
    """
    return sort_key(a) == sort_key(b)


def compare(a, b):
    """ Compare two values of the same kind: -1, 0, +1

        Returns None when the kinds differ: type bracketing.
        A missing value never compares.
    """
    if a is MISSING or b is MISSING:
        return None
    ka, kb = sort_key(a), sort_key(b)
    if ka[0] != kb[0]:
        return None
    return (ka > kb) - (ka < kb)


# region Paths

def get_path(doc, path: str, default=MISSING):
    """ Get a value by a dotted path: 'author.name', 'tags.0'

        When the path crosses an array with a non-numeric step, the rest of the path is
        applied to every element of the array, and the results are collected into a list:
        { authors: [{name: 'a'}, {name: 'b'}] } -> 'authors.name' -> ['a', 'b']
    """
    cur = doc
    parts = path.split('.')
    for i, part in enumerate(parts):
        if isinstance(cur, dict):
            if part not in cur:
                return default
            cur = cur[part]
        elif is_array(cur):
            if part.isdigit():
                index = int(part)
                if index >= len(cur):
                    return default
                cur = cur[index]
            else:
                rest = '.'.join(parts[i:])
                found = [get_path(item, rest, MISSING)
                         for item in cur
                         if isinstance(item, dict)]
                found = [v for v in found if v is not MISSING]
                return found if found else default
        else:
            return default
    return cur


def set_path(doc: dict, path: str, value):
    """ Set a value by a dotted path, creating intermediate objects when necessary

        :raises InvalidSpecError: a non-object value is in the way
    """
    parts = path.split('.')
    cur = doc
    for part in parts[:-1]:
        if part not in cur:
            cur[part] = {}
        cur = cur[part]
        if not isinstance(cur, dict):
            raise InvalidSpecError('Cannot set "{}": "{}" is not an object'.format(path, part))
    cur[parts[-1]] = value


def unset_path(doc: dict, path: str):
    """ Remove a value by a dotted path. Quietly ignores missing paths. """
    parts = path.split('.')
    cur = doc
    for part in parts[:-1]:
        cur = cur.get(part)
        if not isinstance(cur, dict):
            return
    cur.pop(parts[-1], None)

# endregion


def validate_document(doc):
    """ Make sure a document can be stored

        :raises InvalidDocumentError
    """
    if not isinstance(doc, dict):
        raise InvalidDocumentError('Document must be an object; {} provided'.format(type(doc).__name__))
    for key in doc.keys():
        if not isinstance(key, str):
            raise InvalidDocumentError('Field names must be strings; {!r} provided'.format(key))
        if key.startswith('$'):
            raise InvalidDocumentError('Field names can not start with "$": {!r}'.format(key))
    validate_value(doc)


def validate_value(value):
    """ Make sure a value can be stored in a document

        :raises InvalidDocumentError
    """
    try:
        kind = kind_of(value)
    except TypeMismatchError:
        raise InvalidDocumentError('Unsupported value type: {}'.format(type(value).__name__))

    if kind == Kind.MAPPING:
        for k, v in value.items():
            if not isinstance(k, str):
                raise InvalidDocumentError('Field names must be strings; {!r} provided'.format(k))
            validate_value(v)
    elif kind == Kind.ARRAY:
        for v in value:
            validate_value(v)


copy_document = copy.deepcopy
