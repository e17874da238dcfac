"""
### Collections

A collection is a named, insertion-ordered set of documents, with indexes.

```python
books = db.create_collection('books')
book_id = books.insert_one({'title': '1984', 'author': 'George Orwell', 'published_year': 1949})
books.find({'author': 'George Orwell'}).to_list()
```

Every document has an `_id`. When a document is inserted without one, an ObjectId-like string is generated.
The `_id` can't be changed afterwards.

Documents are never shared with the caller: whatever goes in is copied, and whatever comes out is a copy.
Stored documents are never modified either: an update replaces the stored document with a new one.
This is what makes queries safe to run without holding the lock: a query captures the documents it needs,
and later updates do not affect them.
"""

import itertools
import logging
import os
import random
import threading
import time
from collections import OrderedDict
from operator import itemgetter

from .cursor import Cursor
from .exc import InvalidDocumentError, NotFoundError
from .handlers import MongoUpdate
from .index import IndexManager
from .pipeline import MongoPipeline
from .query import MongoQuery
from .values import Kind, copy_document, kind_of, sort_key, validate_document

logger = logging.getLogger(__name__)


# region ObjectId

_OBJECT_ID_PROCESS_RANDOM = os.urandom(5).hex()
_OBJECT_ID_COUNTER = itertools.count(random.randint(0, 0xFFFFFF))


def generate_object_id():
    """ Generate a unique id: a 24-character hex string, like a MongoDB ObjectId

        4 bytes of the timestamp, 5 random bytes per process, and a 3-byte counter.
    """
    return '{:08x}{}{:06x}'.format(int(time.time()) & 0xFFFFFFFF,
                                   _OBJECT_ID_PROCESS_RANDOM,
                                   next(_OBJECT_ID_COUNTER) & 0xFFFFFF)

# endregion


class DocumentSnapshot:
    """ A lazy, restartable sequence of documents

        The documents are captured when the snapshot is made; every iteration gives fresh copies.
    """

    def __init__(self, documents):
        self._documents = documents

    def __iter__(self):
        return map(copy_document, self._documents)

    def __len__(self):
        return len(self._documents)


class Collection:
    """ A collection of documents

        All mutations run under `lock`. Queries only take it to capture their documents.
    """

    def __init__(self, name, settings=None):
        """ Init an empty collection

        :param name: Collection name
        :param settings: MongoQuery settings for queries on this collection. See MongoQuerySettingsDict
        :type settings: dict | MongoQuerySettingsDict | None
        :raises KeyError: invalid settings
        """
        self.name = name
        self.settings = settings or {}
        self.lock = threading.RLock()
        self.indexes = IndexManager(name)

        #: Stored documents, by sequence number. Ordered by insertion.
        self._documents = OrderedDict()
        #: sort_key(_id) -> sequence number
        self._seqs = {}
        self._seq_counter = itertools.count()

        # Validate the settings
        MongoQuery(self, self.settings)

    def __repr__(self):
        return 'Collection({!r})'.format(self.name)

    def __len__(self):
        return len(self._documents)

    # region Read

    def scan(self):
        """ All documents, in insertion order

            :rtype: DocumentSnapshot
        """
        with self.lock:
            return DocumentSnapshot(list(self._documents.values()))

    def get(self, id):
        """ Get a document by id

            :raises NotFoundError: no such document
        """
        with self.lock:
            doc = self._documents.get(self._seqs.get(sort_key(id)))
        if doc is None:
            raise NotFoundError('document', id)
        return copy_document(doc)

    def mongoquery(self, handler_settings=None):
        """ Get a MongoQuery for this collection

            :param handler_settings: Override the collection settings
            :rtype: MongoQuery
        """
        return MongoQuery(self, self.settings if handler_settings is None else handler_settings)

    def find(self, filter=None, projection=None, sort=None, skip=None, limit=None):
        """ Find documents

            The query is executed when the cursor is iterated.

            :rtype: Cursor
        """
        return Cursor(self, filter=filter, projection=projection, sort=sort, skip=skip, limit=limit)

    def find_one(self, filter=None, projection=None, sort=None):
        """ Find the first matching document

            :return: The document, or None
        """
        return next(iter(self.find(filter, projection, sort=sort, limit=1)), None)

    def count_documents(self, filter=None, skip=None, limit=None):
        """ Count matching documents """
        return self.mongoquery().query(filter=filter, skip=skip, limit=limit, count=True).end()

    def explain(self, filter=None, **query_object):
        """ Run a query, and describe how it was executed

            :param query_object: project, sort, skip, limit
            :rtype: dict
        """
        return self.mongoquery().query(filter=filter, **query_object).explain()

    def aggregate(self, pipeline):
        """ Run an aggregation pipeline

            :rtype: Iterator[dict]
        """
        return MongoPipeline(self, self._internal_settings()).input(pipeline).end()

    # endregion

    # region Write

    def insert_one(self, document):
        """ Insert a document

            :return: The _id of the new document
            :raises InvalidDocumentError: not a valid document
            :raises DuplicateKeyError: unique index violation
        """
        doc = self._prepare_document(document)
        with self.lock:
            self.indexes.check_document(doc)
            self._store(doc)
        return doc['_id']

    insert = insert_one

    def insert_many(self, documents):
        """ Insert many documents

            Either all of them are inserted, or none.

            :return: The list of ids
            :raises InvalidDocumentError: not a valid document
            :raises DuplicateKeyError: unique index violation
        """
        docs = [self._prepare_document(document) for document in documents]
        with self.lock:
            stored = []
            try:
                for doc in docs:
                    self.indexes.check_document(doc)
                    stored.append(self._store(doc))
            except Exception:
                for seq in reversed(stored):
                    self._remove_stored(seq)
                raise
        return [doc['_id'] for doc in docs]

    def update(self, id, partial):
        """ Update a document by id

            :param partial: The fields to set, or an update object with operators: {'$set': ..., '$inc': ...}
            :return: The number of updated documents: 0 or 1
        """
        update = MongoUpdate(self.name).input(partial)
        with self.lock:
            seq = self._seqs.get(sort_key(id))
            if seq is None:
                return 0
            return self._update_stored([self._documents[seq]], update)

    def update_one(self, filter, update):
        """ Update the first matching document

            :return: 0 or 1
        """
        return self._update(filter, update, limit=1)

    def update_many(self, filter, update):
        """ Update all matching documents

            :return: The number of updated documents
        """
        return self._update(filter, update)

    def delete_one(self, filter):
        """ Delete the first matching document

            :return: 0 or 1
        """
        return self._delete(filter, limit=1)

    def delete_many(self, filter):
        """ Delete all matching documents

            :return: The number of deleted documents
        """
        return self._delete(filter)

    delete = delete_many

    # endregion

    # region Indexes

    def create_index(self, fields, name=None, unique=False):
        """ Create an index. See IndexManager.create_index()

            :return: Index name
        """
        with self.lock:
            return self.indexes.create_index(
                fields, name=name, unique=unique,
                documents=((doc['_id'], seq, doc) for seq, doc in self._documents.items()))

    def drop_index(self, name):
        with self.lock:
            self.indexes.drop_index(name)

    def list_indexes(self):
        with self.lock:
            return self.indexes.list_indexes()

    # endregion

    # region Internals

    def _internal_settings(self):
        """ Settings for queries made by write operations and pipelines

            Only the planner settings are used: `force_filter`, `max_items`, and the rest are for the user's queries.
        """
        return {'use_indexes': self.settings.get('use_indexes', True)}

    def _prepare_document(self, document):
        """ Validate and copy a document; give it an _id """
        validate_document(document)
        doc = copy_document(document)
        if '_id' not in doc:
            doc['_id'] = generate_object_id()
        elif kind_of(doc['_id']) in (Kind.MAPPING, Kind.ARRAY):
            raise InvalidDocumentError('_id must be a scalar; {!r} provided'.format(doc['_id']))
        return doc

    def _matching(self, filter, limit=None):
        """ Find stored documents that match a filter. Call under the lock. """
        return self.mongoquery(self._internal_settings()).query(filter=filter, limit=limit).matching_documents()

    def _update(self, filter, update, limit=None):
        update = MongoUpdate(self.name).input(update)
        with self.lock:
            return self._update_stored(self._matching(filter, limit), update)

    def _update_stored(self, documents, update):
        """ Apply an update to stored documents. Either all of them are updated, or none.

            :return: The number of updated documents
        """
        replaced = []
        try:
            for old in documents:
                seq = self._seqs[sort_key(old['_id'])]
                new = update.apply(old)
                self.indexes.check_document(new, seq)
                self._replace_stored(seq, new)
                replaced.append((seq, old))
        except Exception:
            for seq, old in reversed(replaced):
                self._replace_stored(seq, old)
            raise

        if replaced:
            logger.debug('Updated %d documents in "%s"', len(replaced), self.name)
        return len(replaced)

    def _delete(self, filter, limit=None):
        with self.lock:
            documents = self._matching(filter, limit)
            removed = []
            try:
                for doc in documents:
                    seq = self._seqs[sort_key(doc['_id'])]
                    self._remove_stored(seq)
                    removed.append((seq, doc))
            except Exception:
                for seq, doc in reversed(removed):
                    self.indexes.insert(doc['_id'], seq, doc)
                    self._documents[seq] = doc
                    self._seqs[sort_key(doc['_id'])] = seq
                # Back to the insertion order
                self._documents = OrderedDict(sorted(self._documents.items(), key=itemgetter(0)))
                raise

        if documents:
            logger.debug('Deleted %d documents from "%s"', len(documents), self.name)
        return len(documents)

    # Indexes go first: when they fail, they roll themselves back, and the documents are not touched yet.

    def _store(self, doc):
        """ Store a new document. Call under the lock. """
        seq = next(self._seq_counter)
        self.indexes.insert(doc['_id'], seq, doc)
        self._documents[seq] = doc
        self._seqs[sort_key(doc['_id'])] = seq
        return seq

    def _replace_stored(self, seq, doc):
        """ Replace a stored document with a new one. Call under the lock. """
        self.indexes.replace(doc['_id'], seq, doc)
        self._documents[seq] = doc

    def _remove_stored(self, seq):
        """ Remove a stored document. Call under the lock. """
        self.indexes.remove(seq)
        doc = self._documents.pop(seq)
        del self._seqs[sort_key(doc['_id'])]

    # endregion
