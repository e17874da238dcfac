"""
### Database

A database is a named set of collections. It also offers a command-style interface,
where the collection is given by name:

```python
db = Database('bookstore')
db.create_collection('books')
db.insert_many('books', [...])
db.create_index('books', {'author': 1, 'published_year': 1})
db.find('books', {'author': 'Harper Lee'}, sort={'published_year': 1})
```

Referencing a collection that does not exist is a `NotFoundError`: collections are never created implicitly.
"""

import logging
import threading
from collections import OrderedDict

from .exc import NotFoundError
from .store import Collection

logger = logging.getLogger(__name__)


class Database:
    """ A named set of collections """

    #: The class to use for collections
    _COLLECTION_CLS = Collection

    def __init__(self, name='test'):
        self.name = name
        self._collections = OrderedDict()  # type: dict[str, Collection]
        self._lock = threading.RLock()

    def __repr__(self):
        return 'Database({!r})'.format(self.name)

    # region Collections

    def create_collection(self, name, settings=None):
        """ Create a collection

            Idempotent: when the collection exists, it's returned as is (and `settings` are ignored).

            :param name: Collection name
            :param settings: MongoQuery settings for the collection. See MongoQuerySettingsDict
            :rtype: Collection
        """
        if not isinstance(name, str) or not name or name.startswith('$'):
            raise ValueError('Invalid collection name: {!r}'.format(name))

        with self._lock:
            if name not in self._collections:
                self._collections[name] = self._COLLECTION_CLS(name, settings)
                logger.debug('Created collection "%s" in "%s"', name, self.name)
            return self._collections[name]

    def get_collection(self, name):
        """ Get a collection by name

            :rtype: Collection
            :raises NotFoundError: no such collection
        """
        try:
            return self._collections[name]
        except KeyError:
            raise NotFoundError('collection', name)

    __getitem__ = get_collection

    def __contains__(self, name):
        return name in self._collections

    def drop_collection(self, name):
        """ Drop a collection with all its documents and indexes

            :raises NotFoundError: no such collection
        """
        with self._lock:
            self.get_collection(name)
            del self._collections[name]
        logger.debug('Dropped collection "%s" from "%s"', name, self.name)

    def list_collection_names(self):
        return list(self._collections)

    # endregion

    # region Commands

    def create_index(self, collection, field_spec, name=None, unique=False):
        """ Create an index on a collection

            :return: The index name
            :raises NotFoundError: no such collection
        """
        return self.get_collection(collection).create_index(field_spec, name=name, unique=unique)

    def explain(self, collection, filter=None, **query_object):
        """ Describe how a query is executed

            :return: {usedIndex, usedIndexes, stage, consideredDocsCount, returnedDocsCount, sortedByIndex}
        """
        return self.get_collection(collection).explain(filter, **query_object)

    def find(self, collection, filter=None, projection=None, sort=None, skip=None, limit=None):
        """ Find documents

            :rtype: mongomem.cursor.Cursor
        """
        return self.get_collection(collection).find(filter, projection, sort=sort, skip=skip, limit=limit)

    def insert_one(self, collection, document):
        return self.get_collection(collection).insert_one(document)

    def insert_many(self, collection, documents):
        return self.get_collection(collection).insert_many(documents)

    def update_one(self, collection, filter, set_fields):
        """ Update the first matching document

            :param set_fields: The fields to set, or an update object: {'$set': ..., '$inc': ...}
            :return: 0 or 1
        """
        return self.get_collection(collection).update_one(filter, set_fields)

    def delete_one(self, collection, filter):
        """ Delete the first matching document

            :return: 0 or 1
        """
        return self.get_collection(collection).delete_one(filter)

    def aggregate(self, collection, pipeline):
        return self.get_collection(collection).aggregate(pipeline)

    # endregion
