import logging
import unittest
from datetime import datetime, timedelta, timezone

from mongomem import Database, MongoQuery, MongoQuerySettingsDict
from mongomem.exc import InvalidSpecError, DisabledError

from .bookstore import init_database, titles, TITLES


# Titles, by price ascending. Ties are in insertion order
BY_PRICE = [
    'Pride and Prejudice',      # 7.99
    'Animal Farm',              # 8.50
    'The Catcher in the Rye',   # 8.99
    'The Great Gatsby',         # 9.99
    'Wuthering Heights',        # 9.99
    '1984',                     # 10.99
    'The Alchemist',            # 10.99
    'Brave New World',          # 11.50
    'Moby Dick',                # 12.50
    'To Kill a Mockingbird',    # 12.99
    'The Hobbit',               # 14.99
    'The Midnight Library',     # 16.99
    'Project Hail Mary',        # 18.99
    'The Lord of the Rings',    # 19.99
]

# Titles, by price descending. Ties are still in insertion order
BY_PRICE_DESC = [
    'The Lord of the Rings',
    'Project Hail Mary',
    'The Midnight Library',
    'The Hobbit',
    'To Kill a Mockingbird',
    'Moby Dick',
    'Brave New World',
    '1984',
    'The Alchemist',
    'The Great Gatsby',
    'Wuthering Heights',
    'The Catcher in the Rye',
    'Animal Farm',
    'Pride and Prejudice',
]


class QueryTest(unittest.TestCase):
    """ Test queries against the bookstore """

    longMessage = True
    maxDiff = None

    @classmethod
    def setUpClass(cls):
        # Logging
        logging.basicConfig(level=logging.DEBUG)

    def setUp(self):
        self.db = init_database()
        self.books = self.db['books']

    def test_find(self):
        books = self.books

        # Everything, in insertion order
        self.assertEqual(titles(books.find()), TITLES)
        self.assertEqual(titles(self.db.find('books')), TITLES)

        # Simple queries
        self.assertEqual(titles(books.find({'genre': 'Fiction'})), [
            'To Kill a Mockingbird', 'The Great Gatsby', 'The Catcher in the Rye',
            'The Alchemist', 'The Midnight Library',
        ])
        self.assertEqual(titles(books.find({'published_year': {'$gt': 2010}})),
                         ['The Midnight Library', 'Project Hail Mary'])
        self.assertEqual(titles(books.find({'in_stock': True, 'published_year': {'$gt': 2010}})),
                         ['The Midnight Library'])
        self.assertEqual(titles(books.find({'author': 'George Orwell'})),
                         ['1984', 'Animal Farm'])
        self.assertEqual(titles(books.find({'publisher.country': 'BR'})),
                         ['The Alchemist'])
        self.assertEqual(titles(books.find({'tags': {'$all': ['classic', 'politics']}})),
                         ['1984'])
        self.assertEqual(titles(books.find({'tags': {'$size': 0}})),
                         ['The Catcher in the Rye'])
        self.assertEqual(titles(books.find({'$or': [{'price': {'$lt': 8}}, {'price': {'$gt': 19}}]})),
                         ['Pride and Prejudice', 'The Lord of the Rings'])
        self.assertEqual(titles(books.find({'isbn': {'$exists': True}})), [])

        # Projection
        results = books.find({'author': 'George Orwell'}, {'title': 1, 'author': 1, 'price': 1, '_id': 0}).to_list()
        self.assertEqual(results, [
            {'title': '1984', 'author': 'George Orwell', 'price': 10.99},
            {'title': 'Animal Farm', 'author': 'George Orwell', 'price': 8.50},
        ])

        results = books.find({'title': '1984'}, {'publisher.name': 1, '_id': 1}).to_list()
        self.assertEqual(len(results), 1)
        self.assertEqual(set(results[0]), {'_id', 'publisher'})
        self.assertEqual(results[0]['publisher'], {'name': 'Secker & Warburg'})

        results = books.find({'title': '1984'}, {'tags': 0, 'publisher': 0, 'pages': 0}).to_list()
        self.assertEqual(results, [{'title': '1984', 'author': 'George Orwell', 'genre': 'Dystopian',
                                    'published_year': 1949, 'price': 10.99, 'in_stock': True}])

        # Empty projection: whole documents
        self.assertEqual(books.find({}, {}).to_list(), books.find().to_list())
        self.assertIn('_id', books.find_one({'title': '1984'}, {}))

        # Nested fields in arrays of objects
        books.insert_one({'title': 'Good Omens', 'authors': [{'name': 'Terry Pratchett', 'born': 1948},
                                                             {'name': 'Neil Gaiman', 'born': 1960}]})
        self.assertEqual(books.find_one({'title': 'Good Omens'}, {'authors.name': 1, '_id': 0}),
                         {'authors': [{'name': 'Terry Pratchett'}, {'name': 'Neil Gaiman'}]})
        books.delete_one({'title': 'Good Omens'})

        # Documents are copies
        doc = books.find_one({'title': '1984'})
        doc['title'] = 'Nineteen Eighty-Four'
        doc['tags'].append('modified')
        self.assertEqual(books.find_one({'_id': doc['_id']})['tags'], ['classic', 'politics'])
        self.assertEqual(books.count_documents({'title': '1984'}), 1)

    def test_sort(self):
        books = self.books

        self.assertEqual(titles(books.find(sort={'price': 1})), BY_PRICE)
        self.assertEqual(titles(books.find(sort={'price': -1})), BY_PRICE_DESC)
        self.assertEqual(titles(books.find().sort('price')), BY_PRICE)
        self.assertEqual(titles(books.find().sort('price', -1)), BY_PRICE_DESC)
        self.assertEqual(titles(books.find(sort='price-')), BY_PRICE_DESC)
        self.assertEqual(titles(books.find(sort=['price+'])), BY_PRICE)

        # Stable: ties keep the insertion order
        in_stock_last = titles(books.find(sort={'in_stock': 1}))
        self.assertEqual(in_stock_last[:4], ['Brave New World', 'Animal Farm', 'Moby Dick', 'Project Hail Mary'])
        self.assertEqual(in_stock_last[4:], [t for t in TITLES if t not in in_stock_last[:4]])

        # Compound
        self.assertEqual(titles(books.find({'published_year': {'$lt': 1950}},
                                           sort=[('genre', 1), ('published_year', -1)])), [
            'Moby Dick',  # Adventure
            '1984', 'Brave New World',  # Dystopian
            'The Hobbit',  # Fantasy
            'The Great Gatsby',  # Fiction
            'Wuthering Heights',  # Gothic Fiction
            'Animal Farm',  # Political Satire
            'Pride and Prejudice',  # Romance
        ])

        # Sorted by an index
        self.assertEqual(titles(books.find(sort={'title': 1})), sorted(TITLES))
        self.assertEqual(titles(books.find(sort={'title': -1})), sorted(TITLES, reverse=True))
        self.assertEqual(titles(books.find({'author': 'J.R.R. Tolkien'}, sort={'author': -1, 'published_year': -1})),
                         ['The Lord of the Rings', 'The Hobbit'])

        # Empty field names
        with self.assertRaises(InvalidSpecError):
            books.find(sort=['']).to_list()
        with self.assertRaises(InvalidSpecError):
            books.find(sort=['title', '']).to_list()

    def test_pagination(self):
        books = self.books

        page1 = titles(books.find(sort={'price': 1}, skip=0, limit=5))
        page2 = titles(books.find(sort={'price': 1}, skip=5, limit=5))
        page3 = titles(books.find(sort={'price': 1}, skip=10, limit=5))

        self.assertEqual(page2, ['1984', 'The Alchemist', 'Brave New World', 'Moby Dick', 'To Kill a Mockingbird'])
        self.assertEqual(page1 + page2, titles(books.find(sort={'price': 1}, limit=10)))
        self.assertEqual(page1 + page2 + page3, BY_PRICE)
        self.assertEqual(len(page3), 4)

        # Chained
        self.assertEqual(titles(books.find().sort('price').skip(5).limit(5)), page2)

        # Out of range
        self.assertEqual(titles(books.find(sort={'price': 1}, skip=100)), [])

        # Errors
        with self.assertRaises(InvalidSpecError):
            books.find(limit='5').to_list()

    def test_explain(self):
        books = self.books

        # Equality on an indexed field
        explain = books.explain({'title': '1984'})
        self.assertEqual(explain, dict(usedIndex='title_1', usedIndexes=['title_1'], stage='IXSCAN',
                                       consideredDocsCount=1, returnedDocsCount=1, sortedByIndex=False))
        self.assertEqual(self.db.explain('books', {'title': '1984'})['usedIndex'], 'title_1')

        # Not indexed
        explain = books.explain({'genre': 'Fiction'})
        self.assertEqual(explain, dict(usedIndex=None, usedIndexes=[], stage='COLLSCAN',
                                       consideredDocsCount=14, returnedDocsCount=5, sortedByIndex=False))

        # Compound index: full key, and the prefix
        explain = books.explain({'author': 'George Orwell', 'published_year': 1949})
        self.assertEqual(explain['usedIndex'], 'author_1_published_year_1')
        self.assertEqual(explain['consideredDocsCount'], 1)

        explain = books.explain({'author': 'George Orwell'})
        self.assertEqual(explain['usedIndex'], 'author_1_published_year_1')
        self.assertEqual(explain['consideredDocsCount'], 2)
        self.assertEqual(explain['returnedDocsCount'], 2)

        # $in, combined with a field that is not indexed
        explain = books.explain({'author': {'$in': ['George Orwell', 'J.R.R. Tolkien']}, 'genre': 'Fantasy'})
        self.assertEqual(explain['consideredDocsCount'], 4)
        self.assertEqual(explain['returnedDocsCount'], 2)

        # Range
        explain = books.explain({'title': {'$gte': 'The'}})
        self.assertEqual(explain['stage'], 'IXSCAN')
        self.assertEqual(explain['consideredDocsCount'], 8)
        self.assertEqual(explain['returnedDocsCount'], 8)

        # Two indexes
        explain = books.explain({'title': {'$gte': 'The'}, 'author': {'$lt': 'J'}})
        self.assertEqual(explain['usedIndexes'], ['title_1', 'author_1_published_year_1'])
        self.assertEqual(titles(books.find({'title': {'$gte': 'The'}, 'author': {'$lt': 'J'}})),
                         ['To Kill a Mockingbird', 'The Great Gatsby', 'Wuthering Heights'])
        self.assertEqual(explain['consideredDocsCount'], 3)

        # Sort
        explain = books.explain(sort={'title': 1})
        self.assertEqual(explain['usedIndex'], 'title_1')
        self.assertTrue(explain['sortedByIndex'])
        self.assertEqual(explain['consideredDocsCount'], 14)

        explain = books.explain(sort={'price': 1}, limit=3)
        self.assertEqual(explain['stage'], 'COLLSCAN')
        self.assertFalse(explain['sortedByIndex'])
        self.assertEqual(explain['returnedDocsCount'], 3)

        # Cursors can explain themselves
        self.assertEqual(books.find({'title': '1984'}).explain()['usedIndex'], 'title_1')

        # No such collection
        with self.assertRaises(LookupError):
            self.db.explain('magazines', {})

    def test_index_equivalence(self):
        """ Indexes never change the results """
        indexed = self.books
        scanned = init_database(settings={'use_indexes': False})['books']

        filters = [
            {},
            {'title': '1984'},
            {'title': 'Alpha'},
            {'title': ['Zeta', 'Alpha']},
            {'title': None},
            {'title': {'$in': ['1984', 'Moby Dick', 'Nope', 'Zeta']}},
            {'title': {'$lt': 'M'}, 'author': {'$ne': 'Aldous Huxley'}},
            {'title': {'$gte': 'The', '$lte': 'To'}},
            {'author': 'J.R.R. Tolkien', 'published_year': {'$gt': 1940}},
            {'author': 'George Orwell', 'published_year': 1945},
            {'author': {'$gte': 'J'}},
            {'author': 'Anon'},
            {'author': {'$in': [None, 'Anon']}},
            {'$or': [{'title': '1984'}, {'genre': 'Fantasy'}]},
            {'published_year': {'$gte': 1900}},
        ]
        sorts = [
            None,
            {'title': 1},
            {'title': -1},
            {'author': 1, 'published_year': 1},
            {'author': -1, 'published_year': -1},
            {'price': 1},
            {'author': 1},
        ]

        def assert_same_results():
            for filter in filters:
                for sort in sorts:
                    for skip, limit in ((None, None), (1, 3)):
                        kw = dict(sort=sort, skip=skip, limit=limit)
                        self.assertEqual(
                            indexed.find(filter, {'_id': 0}, **kw).to_list(),
                            scanned.find(filter, {'_id': 0}, **kw).to_list(),
                            msg='filter={!r} {!r}'.format(filter, kw))
                        self.assertEqual(indexed.count_documents(filter, skip, limit),
                                         scanned.count_documents(filter, skip, limit))

                self.assertEqual(scanned.explain(filter)['stage'], 'COLLSCAN')

        # Indexes sort
        assert_same_results()
        self.assertTrue(indexed.explain(sort={'title': 1})['sortedByIndex'])

        # Multikey documents
        for books in (indexed, scanned):
            books.insert_one({'title': ['Zeta', 'Alpha'], 'author': ['Anon', 'Somebody'], 'price': 1})
            books.insert_one({'author': 'Anonymous', 'price': 1})
        assert_same_results()

        # Indexes were actually used
        self.assertEqual(indexed.explain({'title': 'Alpha'})['stage'], 'IXSCAN')
        self.assertEqual(indexed.explain({'title': 'Alpha'})['consideredDocsCount'], 1)
        self.assertFalse(indexed.explain(sort={'title': 1})['sortedByIndex'])  # multikey now

    def test_index_equivalence_mixed_values(self):
        """ Indexes agree with a full scan on NaN, and on datetimes with and without a timezone """
        nan = float('nan')
        values = [3, nan, 1, 2, None, 'x',
                  datetime(2000, 1, 1, 12),
                  datetime(2000, 1, 1, 13, tzinfo=timezone(timedelta(hours=2))),  # 11:00 UTC
                  datetime(2000, 1, 1, 11, 30, tzinfo=timezone.utc)]
        indexed = Database().create_collection('values')
        indexed.create_index('p')
        scanned = Database().create_collection('values', settings={'use_indexes': False})
        for collection in (indexed, scanned):
            collection.insert_many([{'n': n, 'p': p} for n, p in enumerate(values)])

        filters = [
            {'p': {'$gte': 0}},
            {'p': {'$lt': 5}},
            {'p': {'$lte': nan}},
            {'p': nan},
            {'p': {'$gt': datetime(2000, 1, 1, 11)}},
            {'p': {'$lt': datetime(2000, 1, 1, 12, tzinfo=timezone.utc)}},
            {'p': datetime(2000, 1, 1, 11, tzinfo=timezone.utc)},
        ]

        def numbers(collection, filter, sort=None):
            return [doc['n'] for doc in collection.find(filter, sort=sort)]

        def assert_same_results():
            for filter in filters:
                for sort in (None, {'p': 1}, {'p': -1}):
                    self.assertEqual(numbers(indexed, filter, sort), numbers(scanned, filter, sort),
                                     msg='filter={!r} sort={!r}'.format(filter, sort))
            self.assertEqual(numbers(indexed, {}, {'p': 1}), numbers(scanned, {}, {'p': 1}))

        assert_same_results()
        self.assertEqual(indexed.explain({'p': {'$gte': 0}})['stage'], 'IXSCAN')

        # NaN is a number below all others
        self.assertEqual(sorted(numbers(indexed, {'p': {'$gte': 0}})), [0, 2, 3])
        self.assertEqual(sorted(numbers(indexed, {'p': {'$lt': 5}})), [0, 1, 2, 3])
        self.assertEqual(numbers(indexed, {'p': nan}), [1])
        self.assertEqual(numbers(indexed, {}, {'p': 1}), [4, 1, 2, 3, 0, 5, 7, 8, 6])

        # Datetimes are compared in UTC
        self.assertEqual(numbers(indexed, {'p': datetime(2000, 1, 1, 11, tzinfo=timezone.utc)}), [7])
        self.assertEqual(sorted(numbers(indexed, {'p': {'$gt': datetime(2000, 1, 1, 11)}})), [6, 8])

        # Remove them one by one
        for n in range(len(values)):
            for collection in (indexed, scanned):
                self.assertEqual(collection.delete_one({'n': n}), 1)
            assert_same_results()
        self.assertEqual(len(indexed), 0)
        self.assertEqual(len(indexed.indexes['p_1']), 0)

    def test_find_one_count(self):
        books = self.books

        self.assertEqual(books.count_documents(), 14)
        self.assertEqual(books.count_documents({'genre': 'Fiction'}), 5)
        self.assertEqual(books.count_documents({'genre': 'Fiction'}, skip=2), 3)
        self.assertEqual(books.count_documents({'genre': 'Fiction'}, limit=2), 2)
        self.assertEqual(books.count_documents({'genre': 'Poetry'}), 0)

        self.assertEqual(books.find_one({'author': 'George Orwell'})['title'], '1984')
        self.assertIsNone(books.find_one({'author': 'Nobody'}))
        self.assertEqual(books.find_one(sort={'price': -1})['title'], 'The Lord of the Rings')
        self.assertEqual(books.find_one({}, {'title': 1}), {'title': 'To Kill a Mockingbird'})

        # MongoQuery directly
        mq = MongoQuery(books).query(filter={'genre': 'Fiction'}, count=True)
        self.assertTrue(mq.result_is_scalar())
        self.assertEqual(mq.end(), 5)
        self.assertEqual(repr(mq), 'MongoQuery(books)')

        mq = MongoQuery(books).query(filter={'genre': 'Fiction'}, sort=['price-'], project=['title'], limit=1)
        self.assertFalse(mq.result_is_scalar())
        self.assertEqual(list(mq.end()), [{'title': 'The Midnight Library'}])

        # Unknown Query Object keys
        with self.assertRaises(InvalidSpecError):
            books.mongoquery().query(filter={}, group={})

    def test_cursor(self):
        books = self.books

        cursor = books.find({'genre': 'Fiction'}).sort('price', -1).skip(1).limit(2)
        self.assertIn('Fiction', repr(cursor))
        self.assertEqual(next(cursor)['title'], 'To Kill a Mockingbird')

        # Started: can't be modified
        with self.assertRaises(RuntimeError):
            cursor.sort('title')
        with self.assertRaises(RuntimeError):
            cursor.skip(0)
        with self.assertRaises(RuntimeError):
            cursor.limit(10)

        # The rest
        self.assertEqual(titles(cursor.to_list()), ['The Alchemist'])
        self.assertEqual(cursor.to_list(), [])

        # Rewind
        cursor.rewind().limit(1)
        self.assertEqual(titles(cursor), ['To Kill a Mockingbird'])

        # Sort syntaxes
        expected = ['The Hobbit', 'The Lord of the Rings']
        self.assertEqual(titles(books.find({'genre': 'Fantasy'}).sort({'published_year': 1})), expected)
        self.assertEqual(titles(books.find({'genre': 'Fantasy'}).sort([('published_year', 1)])), expected)
        self.assertEqual(titles(books.find({'genre': 'Fantasy'}).sort('published_year-')), expected[::-1])

        # Invalid input is reported when the query runs
        cursor = books.find({'price': {'$gt': None}})
        with self.assertRaises(TypeError):
            list(cursor)

    def test_settings(self):
        # Disabled handlers
        books = init_database(settings=dict(sort_enabled=False, count_enabled=False))['books']
        self.assertEqual(len(books.find().to_list()), 14)
        with self.assertRaises(DisabledError):
            books.find(sort={'price': 1}).to_list()
        with self.assertRaises(DisabledError):
            books.count_documents()

        # Invalid settings
        with self.assertRaises(KeyError):
            Database().create_collection('books', {'max_itemz': 10})
        with self.assertRaises(KeyError):
            books.mongoquery({'sort_enable': False})

        # max_items
        books = init_database(settings=MongoQuerySettingsDict(max_items=3))['books']
        self.assertEqual(len(books.find().to_list()), 3)
        self.assertEqual(len(books.find(limit=10).to_list()), 3)
        self.assertEqual(len(books.find(limit=2).to_list()), 2)
        self.assertEqual(books.count_documents(), 14)

        # default_projection
        books = init_database(settings=dict(default_projection={'title': 1}))['books']
        self.assertEqual(books.find_one(), {'title': 'To Kill a Mockingbird'})
        self.assertEqual(books.find_one({}, ['author']), {'author': 'Harper Lee'})

        # force_exclude
        settings = MongoQuerySettingsDict(force_exclude=['price'])
        books = init_database(settings=settings)['books']
        self.assertFalse(any('price' in doc for doc in books.find()))
        self.assertEqual(books.find_one({}, ['title', 'price']), {'title': 'To Kill a Mockingbird'})
        self.assertEqual(titles(books.find(sort={'price': 1}, limit=2)), BY_PRICE[:2])

        # force_filter
        books = init_database(settings=settings.and_more(force_filter={'in_stock': True}))['books']
        self.assertEqual(books.count_documents(), 10)
        self.assertEqual(books.count_documents({'published_year': {'$gt': 2010}}), 1)
        self.assertFalse(any('price' in doc for doc in books.find()))
        # Writes are not affected
        self.assertEqual(books.update_many({}, {'$set': {'seen': True}}), 14)
        self.assertEqual(books.delete_one({'in_stock': False}), 1)

        # use_indexes
        books = init_database(settings=dict(use_indexes=False))['books']
        self.assertEqual(books.explain({'title': '1984'})['stage'], 'COLLSCAN')
        self.assertEqual(books.explain({'title': '1984'})['consideredDocsCount'], 14)

        # Per-query settings
        self.assertEqual(self.books.mongoquery({'use_indexes': False}).query(filter={'title': '1984'})
                         .explain()['stage'], 'COLLSCAN')

    def test_settings_dict(self):
        settings = MongoQuerySettingsDict(max_items=5)
        self.assertEqual(settings['max_items'], 5)
        self.assertIs(settings['use_indexes'], True)
        self.assertIsNone(settings['force_filter'])

        more = settings.and_more(force_exclude=['price'])
        self.assertEqual(more['max_items'], 5)
        self.assertEqual(more['force_exclude'], ['price'])
        self.assertNotIn('price', settings['force_exclude'] or ())

        plucked = MongoQuerySettingsDict.pluck_from({'max_items': 5, 'force_exclude': ['price'], 'other': 1})
        self.assertIsNone(plucked['max_items'])
        self.assertEqual(plucked['force_exclude'], ['price'])
        self.assertNotIn('other', plucked)

    def test_logging(self):
        with self.assertLogs('mongomem.query', 'DEBUG') as logs:
            self.books.find({'title': '1984'}).to_list()
        self.assertIn('IXSCAN', logs.output[0])
        self.assertIn('title_1', logs.output[0])
