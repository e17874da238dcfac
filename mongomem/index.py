"""
### Indexes
An index is an ordered structure over one field, or an ordered tuple of fields (a compound index),
that maps field values to the documents holding them.

Indexes are created like this:

```python
books.create_index({'title': 1})
books.create_index({'author': 1, 'published_year': -1})  # compound
books.create_index('isbn', unique=True)
```

An index is kept as a sorted list of `(key, seq)` entries, where `key` is a tuple of sort keys (one per field),
and `seq` is the insertion sequence number of the document. Because of `seq`, documents with equal keys
are always ordered by insertion.

Indexes let the query planner:

* Look up documents by equality: `{title: 'Dune'}`
* Scan a range of values: `{published_year: {$gt: 2010}}`
* Iterate documents in the order of a sort: `sort={'price': 1}`

A compound index can be used by any query that only uses its leading field(s):
an index on `(author, published_year)` also serves `{author: 'Harper Lee'}`.

Array values are indexed both as a whole and element by element (a *multikey* index),
so that `{tags: 'classic'}` can use an index on `tags`.
A multikey index is never used for sorting, because a document may appear in it more than once.
"""

import bisect
import itertools
import logging
from collections import OrderedDict
from operator import itemgetter

from .exc import InvalidSpecError, NotFoundError, DuplicateKeyError
from .values import Descending, directed_sort_key, sort_key, get_path, is_array

logger = logging.getLogger(__name__)


def parse_index_spec(fields):
    """ Parse an index key specification

        * 'title'
        * {'author': 1, 'published_year': -1}
        * [('author', 1), ('published_year', -1)]
        * ['author', 'published_year']

        :rtype: tuple[tuple[str, int]]
        :raises InvalidSpecError
    """
    if isinstance(fields, str):
        fields = [(fields, 1)]
    elif isinstance(fields, dict):
        fields = list(fields.items())
    elif isinstance(fields, (list, tuple)):
        fields = [(f, 1) if isinstance(f, str) else f
                  for f in fields]
    else:
        raise InvalidSpecError('Index: key spec must be a string, an object, or a list; {} provided'
                               .format(type(fields).__name__))

    if not fields:
        raise InvalidSpecError('Index: key spec is empty')

    spec = []
    for item in fields:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise InvalidSpecError('Index: invalid key spec item: {!r}'.format(item))
        field, direction = item
        if not isinstance(field, str) or not field or field.startswith('$'):
            raise InvalidSpecError('Index: invalid field name: {!r}'.format(field))
        if isinstance(direction, bool) or direction not in (1, -1):
            raise InvalidSpecError('Index: direction can be either +1 or -1 for field "{}"'.format(field))
        spec.append((field, int(direction)))

    # Same field twice?
    if len(set(f for f, d in spec)) != len(spec):
        raise InvalidSpecError('Index: a field is mentioned twice: {!r}'.format(spec))

    return tuple(spec)


def index_name_for(key_spec):
    """ Generate an index name: 'author_1_published_year_-1' """
    return '_'.join('{}_{}'.format(field, direction) for field, direction in key_spec)


class Index:
    """ An ordered index over one or more fields of a collection """

    def __init__(self, collection_name, key_spec, name=None, unique=False):
        """ Init an empty index

        :param collection_name: The collection it indexes. For error messages.
        :param key_spec: Output of parse_index_spec()
        :param name: Index name. Generated when not provided.
        :param unique: Forbid two documents to have the same key
        """
        self.collection_name = collection_name
        self.key_spec = tuple(key_spec)
        self.fields = tuple(field for field, direction in self.key_spec)
        self.directions = tuple(direction for field, direction in self.key_spec)
        self.name = name or index_name_for(self.key_spec)
        self.unique = unique

        #: Has any document contributed an array value?
        self.multikey = False

        # Sorted list of (key, seq)
        self._entries = []
        # seq -> document id
        self._ids = {}
        # seq -> set of keys: for removal
        self._doc_keys = {}

    def __repr__(self):
        return '{}({!r}, {}{})'.format(self.__class__.__name__, self.name,
                                       dict(self.key_spec),
                                       ', unique' if self.unique else '')

    def __len__(self):
        """ The number of indexed documents """
        return len(self._ids)

    @property
    def key(self):
        """ The key spec as a dict, the way it was given to create_index() """
        return dict(self.key_spec)

    # region Maintenance

    def keys_for(self, doc):
        """ Get the set of keys a document is stored under

            There's usually one key; but arrays produce one key per element (plus the array itself).

            :rtype: set[tuple]
        """
        per_field = []
        for field, direction in self.key_spec:
            value = get_path(doc, field)
            candidates = [value]
            if is_array(value):
                candidates.extend(value)
            per_field.append([directed_sort_key(v, direction) for v in candidates])
        return set(itertools.product(*per_field))

    def _is_multikey_document(self, doc):
        return any(is_array(get_path(doc, field)) for field in self.fields)

    def check_unique(self, doc, seq=None):
        """ Check that a document does not violate uniqueness

            :param doc: The document to be stored
            :param seq: The sequence number of the document it replaces, if any
            :raises DuplicateKeyError
        """
        if not self.unique:
            return

        for key in self.keys_for(doc):
            for other_key, other_seq in self._iter_prefix(key):
                if other_seq != seq:
                    raise DuplicateKeyError(self.collection_name, self.name,
                                            {field: get_path(doc, field, None) for field in self.fields})

    def insert(self, doc_id, seq, doc):
        """ Add a document to the index

            Either all of its keys are added, or none.
        """
        keys = self.keys_for(doc)
        self.restore(seq, (doc_id, keys))
        if self._is_multikey_document(doc):
            self.multikey = True

    def remove(self, seq):
        """ Remove a document from the index

            Either all of its keys are removed, or none.

            :return: The removed entry: give it to restore() to put it back
            :raises RuntimeError: the index is out of sync with the documents
        """
        keys = self._doc_keys[seq]
        self._drop_entries(seq, keys)
        del self._doc_keys[seq]
        return self._ids.pop(seq), keys

    def restore(self, seq, entry):
        """ Put back an entry returned by remove() """
        doc_id, keys = entry
        added = []
        try:
            for key in keys:
                bisect.insort(self._entries, (key, seq))
                added.append(key)
        except Exception:
            self._drop_entries(seq, added)
            raise
        self._ids[seq] = doc_id
        self._doc_keys[seq] = keys

    def _drop_entries(self, seq, keys):
        """ Remove (key, seq) entries. Finds all of them before removing any. """
        positions = []
        for key in keys:
            i = bisect.bisect_left(self._entries, (key, seq))
            if i == len(self._entries) or self._entries[i] != (key, seq):
                raise RuntimeError('Index {} is out of sync: no entry {!r} for #{}'.format(self.name, key, seq))
            positions.append(i)

        for i in sorted(positions, reverse=True):
            del self._entries[i]

    # endregion

    # region Lookups

    def _iter_prefix(self, prefix):
        """ Iterate over entries which keys start with the given prefix """
        n = len(prefix)
        # (prefix,) sorts before any (key, seq) that starts with `prefix`
        i = bisect.bisect_left(self._entries, (prefix,))
        for j in range(i, len(self._entries)):
            entry = self._entries[j]
            if entry[0][:n] != prefix:
                break
            yield entry

    @staticmethod
    def _unique(seqs):
        """ Drop duplicate sequence numbers, keep the original order """
        seen = set()
        result = []
        for seq in seqs:
            if seq not in seen:
                seen.add(seq)
                result.append(seq)
        return result

    def _ids_of(self, seqs):
        """ Convert sequence numbers to document ids """
        return [self._ids[seq] for seq in seqs]

    def lookup(self, *values):
        """ Equality lookup on the leading field(s)

            :param values: Values for the first N fields of the index
            :return: list of document ids, in index order
        """
        return self._ids_of(self.lookup_seqs(*values))

    def lookup_seqs(self, *values):
        """ lookup(), but gives sequence numbers rather than ids """
        if not values or len(values) > len(self.key_spec):
            raise ValueError('Index {}: expected 1..{} values, got {}'.format(self.name, len(self.key_spec), len(values)))

        prefix = tuple(directed_sort_key(value, direction)
                       for value, direction in zip(values, self.directions))
        return self._unique(seq for key, seq in self._iter_prefix(prefix))

    def range_scan(self, operator, value):
        """ Range scan on the leading field

            Only values of the same kind are scanned: `{$gt: 10}` won't give you strings.

            :param operator: One of: $gt, $gte, $lt, $lte
            :param value: The value to compare with
            :return: list of document ids, in index order
        """
        return self._ids_of(self.range_scan_seqs(operator, value))

    def range_scan_seqs(self, operator, value):
        """ range_scan(), but gives sequence numbers rather than ids """
        key = sort_key(value)
        kind = key[0]

        # Lower and upper bounds in the natural (ascending) order.
        # (kind,) is lower than any key of this kind; (kind + 1,) is higher than any.
        if operator in ('$gt', '$gte'):
            lo, lo_inclusive = key, operator == '$gte'
            hi, hi_inclusive = (kind + 1,), False
        elif operator in ('$lt', '$lte'):
            lo, lo_inclusive = (kind,), False
            hi, hi_inclusive = key, operator == '$lte'
        else:
            raise ValueError('Index {}: unsupported range operator {!r}'.format(self.name, operator))

        def below_hi(k):
            return k < hi or (hi_inclusive and k == hi)

        def above_lo(k):
            return k > lo or (lo_inclusive and k == lo)

        seqs = []
        if self.directions[0] == 1:
            # Ascending: start at the lower bound, walk up
            i = bisect.bisect_left(self._entries, ((lo,),))
            for j in range(i, len(self._entries)):
                entry_key, seq = self._entries[j]
                k = entry_key[0]
                if not below_hi(k):
                    break
                if above_lo(k):
                    seqs.append(seq)
        else:
            # Descending: start at the upper bound, walk down
            i = bisect.bisect_left(self._entries, ((Descending(hi),),))
            for j in range(i, len(self._entries)):
                entry_key, seq = self._entries[j]
                k = entry_key[0].key
                if not above_lo(k):
                    break
                if below_hi(k):
                    seqs.append(seq)

        return self._unique(seqs)

    def sorted_scan(self, reverse=False):
        """ Iterate over all documents in the order of the index

            :param reverse: Iterate in the reverse order. Documents with equal keys still come in insertion order.
            :return: list of document ids
        """
        return self._ids_of(self.sorted_scan_seqs(reverse))

    def sorted_scan_seqs(self, reverse=False):
        """ sorted_scan(), but gives sequence numbers rather than ids """
        if not reverse:
            seqs = (seq for key, seq in self._entries)
        else:
            seqs = itertools.chain.from_iterable(
                sorted(seq for key, seq in group)
                for key, group in itertools.groupby(reversed(self._entries), key=itemgetter(0))
            )
        return self._unique(seqs)

    def sort_direction_for(self, sort_spec):
        """ Can this index provide the order for a sort?

            :param sort_spec: OrderedDict {field: +1|-1}
            :return: +1 to scan forward, -1 to scan in reverse, None when the index is no good
        """
        spec = tuple(sort_spec.items())
        if self.multikey or not spec:
            return None
        if spec == self.key_spec:
            return +1
        if spec == tuple((field, -direction) for field, direction in self.key_spec):
            return -1
        return None

    # endregion


class IndexManager:
    """ Indexes of a single collection

        Every collection has a unique index on `_id`, named '_id_'. It can't be dropped.

        The collection is responsible for calling insert(), remove(), replace() on every change,
        under its lock.
    """

    #: The name of the primary index
    ID_INDEX_NAME = '_id_'

    _INDEX_CLS = Index

    def __init__(self, collection_name):
        self.collection_name = collection_name
        self._indexes = OrderedDict()  # type: dict[str, Index]

        # The primary index
        self._indexes[self.ID_INDEX_NAME] = self._INDEX_CLS(collection_name, (('_id', 1),),
                                                            name=self.ID_INDEX_NAME, unique=True)

    def __iter__(self):
        return iter(self._indexes.values())

    def __len__(self):
        return len(self._indexes)

    def __contains__(self, name):
        return name in self._indexes

    def __getitem__(self, name):
        try:
            return self._indexes[name]
        except KeyError:
            raise NotFoundError('index', name)

    def create_index(self, fields, name=None, unique=False, documents=()):
        """ Create an index

            Idempotent: when an index with the same key spec already exists, it's returned.

            :param fields: Index key spec. See parse_index_spec()
            :param name: Index name
            :param unique: Unique index?
            :param documents: The documents to build the index from: iterable of (id, seq, document)
            :return: Index name
            :raises InvalidSpecError: invalid key spec, or the name is taken by a different index
            :raises DuplicateKeyError: documents violate the uniqueness
        """
        key_spec = parse_index_spec(fields)
        name = name or index_name_for(key_spec)

        # Same key spec?
        for index in self._indexes.values():
            if index.key_spec == key_spec:
                return index.name

        # Same name, different spec
        if name in self._indexes:
            raise InvalidSpecError('Index: name "{}" is already used by an index with key {!r}'
                                   .format(name, self._indexes[name].key))

        # Build it. Only register when it's built: a unique violation must not leave a broken index behind
        index = self._INDEX_CLS(self.collection_name, key_spec, name=name, unique=unique)
        n = 0
        for doc_id, seq, doc in documents:
            index.check_unique(doc)
            index.insert(doc_id, seq, doc)
            n += 1

        self._indexes[name] = index
        logger.debug('Created index %r on "%s" (%d documents)', index, self.collection_name, n)
        return name

    def drop_index(self, name):
        """ Drop an index by name

            :raises NotFoundError: no such index
            :raises InvalidSpecError: attempt to drop the '_id_' index
        """
        if name == self.ID_INDEX_NAME:
            raise InvalidSpecError('Index: cannot drop the "{}" index'.format(name))
        index = self[name]
        del self._indexes[name]
        logger.debug('Dropped index %r on "%s"', index, self.collection_name)

    def list_indexes(self):
        """ Describe all indexes

            :rtype: list[dict]
        """
        return [dict(name=index.name, key=index.key, unique=index.unique)
                for index in self._indexes.values()]

    # region Maintenance

    def check_document(self, doc, seq=None):
        """ Check that a document can be stored without violating unique indexes

            :param seq: When replacing a document, its sequence number
            :raises DuplicateKeyError
        """
        for index in self._indexes.values():
            index.check_unique(doc, seq)

    # Every method below changes either all indexes, or none of them.

    def insert(self, doc_id, seq, doc):
        inserted = []
        try:
            for index in self._indexes.values():
                index.insert(doc_id, seq, doc)
                inserted.append(index)
        except Exception:
            self._undo(seq, inserted, [])
            raise

    def remove(self, seq):
        removed = []
        try:
            for index in self._indexes.values():
                removed.append((index, index.remove(seq)))
        except Exception:
            self._undo(seq, [], removed)
            raise

    def replace(self, doc_id, seq, doc):
        inserted, removed = [], []
        try:
            for index in self._indexes.values():
                removed.append((index, index.remove(seq)))
            for index in self._indexes.values():
                index.insert(doc_id, seq, doc)
                inserted.append(index)
        except Exception:
            self._undo(seq, inserted, removed)
            raise

    @staticmethod
    def _undo(seq, inserted, removed):
        """ Roll back a failed change: remove what was inserted, restore what was removed """
        for index in reversed(inserted):
            index.remove(seq)
        for index, entry in reversed(removed):
            index.restore(seq, entry)

    # endregion

    # region Lookups

    def index_for_field(self, field):
        """ Find an index that has `field` as its leading field

            Prefers indexes with fewer fields: they are smaller.

            :rtype: Index | None
        """
        candidates = [index for index in self._indexes.values()
                      if index.fields[0] == field]
        if not candidates:
            return None
        return min(candidates, key=lambda index: len(index.fields))

    def index_for_equalities(self, fields):
        """ Find a compound index with the longest prefix covered by equality conditions on `fields`

            :param fields: Names of fields that have an equality condition
            :return: (Index, prefix length), or (None, 0) when no compound index has 2+ fields covered
        """
        best, best_n = None, 1
        for index in self._indexes.values():
            n = len(list(itertools.takewhile(lambda f: f in fields, index.fields)))
            if n > best_n:
                best, best_n = index, n
        return (best, best_n) if best is not None else (None, 0)

    def index_for_sort(self, sort_spec):
        """ Find an index that can provide the order for a sort

            :return: (Index, direction) or (None, None)
        """
        for index in self._indexes.values():
            direction = index.sort_direction_for(sort_spec)
            if direction is not None:
                return index, direction
        return None, None

    def _require_index_for_field(self, field):
        index = self.index_for_field(field)
        if index is None:
            raise NotFoundError('index', field)
        return index

    def lookup(self, field, value):
        """ Equality lookup using any index that starts with `field`

            :rtype: set
            :raises NotFoundError: no index on this field
        """
        return set(self._require_index_for_field(field).lookup(value))

    def range_scan(self, field, operator, value):
        """ Range scan using any index that starts with `field`

            :return: list of ids, in index order
            :raises NotFoundError: no index on this field
        """
        return self._require_index_for_field(field).range_scan(operator, value)

    def sorted_scan(self, field, direction=1):
        """ All document ids, sorted by `field`, using any index that starts with it

            :raises NotFoundError: no index on this field
        """
        index = self._require_index_for_field(field)
        return index.sorted_scan(reverse=(direction != index.directions[0]))

    # endregion
