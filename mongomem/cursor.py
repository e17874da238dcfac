"""
### Cursors

`Collection.find()` gives a cursor: a lazy result that can be refined with chained calls before it's iterated:

```python
cursor = books.find({'in_stock': True}, {'title': 1, 'price': 1})
cursor.sort('price', -1).skip(5).limit(5)

for book in cursor:
    print(book['title'])
```

The query is executed when the iteration starts: that's when the snapshot of the collection is taken.
After that, the cursor can't be modified anymore. Use `rewind()` to run the query again.
"""


class Cursor:
    """ A lazy query result """

    def __init__(self, collection, filter=None, projection=None, sort=None, skip=None, limit=None):
        """ Init a cursor

        :type collection: mongomem.store.Collection
        :param filter: Filter criteria
        :param projection: Projection
        :param sort: Sort spec
        :param skip: The number of documents to skip
        :param limit: The maximum number of documents to return
        """
        self._collection = collection
        self._filter = filter
        self._projection = projection
        self._sort = sort
        self._skip = skip
        self._limit = limit

        #: The iterator over the results, when started
        self._iterator = None

    def __repr__(self):
        return 'Cursor({!r}, {!r})'.format(self._collection.name, self._query_object())

    def _check_not_started(self, method_name):
        if self._iterator is not None:
            raise RuntimeError('Cannot call {}() on a cursor that has already been iterated; '
                               'rewind() it first'.format(method_name))

    def sort(self, key_or_spec, direction=None):
        """ Sort the results

            Can be used like this:

                cursor.sort('price')
                cursor.sort('price', -1)
                cursor.sort({'author': 1, 'published_year': -1})
                cursor.sort([('author', 1), ('published_year', -1)])
        """
        self._check_not_started('sort')
        if direction is not None:
            self._sort = [(key_or_spec, direction)]
        else:
            self._sort = key_or_spec
        return self

    def skip(self, n):
        """ Skip the first `n` documents """
        self._check_not_started('skip')
        self._skip = n
        return self

    def limit(self, n):
        """ Return at most `n` documents """
        self._check_not_started('limit')
        self._limit = n
        return self

    def _query_object(self):
        return dict(filter=self._filter,
                    project=self._projection,
                    sort=self._sort,
                    skip=self._skip,
                    limit=self._limit)

    def _mongoquery(self):
        return self._collection.mongoquery().query(**self._query_object())

    def explain(self):
        """ Run the query, and describe how it was executed

            :rtype: dict
        """
        return self._mongoquery().explain()

    def rewind(self):
        """ Get ready to run the query again """
        self._iterator = None
        return self

    def __iter__(self):
        return self

    def __next__(self):
        if self._iterator is None:
            self._iterator = iter(self._mongoquery().end())
        return next(self._iterator)

    def to_list(self):
        """ Get all the remaining results as a list """
        return list(self)
