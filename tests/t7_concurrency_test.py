import threading
import unittest

from .bookstore import init_database, titles, TITLES


class ConcurrencyTest(unittest.TestCase):
    """ Test snapshots, and concurrent access to a collection """

    longMessage = True
    maxDiff = None

    def setUp(self):
        self.db = init_database()
        self.books = self.db['books']

    def test_cursor_snapshot(self):
        # A started cursor is not affected by deletions
        cursor = self.books.find({'genre': 'Fiction'})
        first = next(cursor)
        self.assertEqual(self.books.delete_many({}), 14)
        self.assertEqual(len(self.books), 0)
        self.assertEqual(titles([first] + cursor.to_list()),
                         ['To Kill a Mockingbird', 'The Great Gatsby', 'The Catcher in the Rye',
                          'The Alchemist', 'The Midnight Library'])

        # ... but a rewound cursor sees the changes
        self.assertEqual(cursor.rewind().to_list(), [])

    def test_cursor_updates(self):
        # A started cursor is not affected by updates
        cursor = self.books.find({}, {'title': 1, 'price': 1}).sort('title')
        next(cursor)
        self.books.update_many({}, {'$set': {'price': 0}})
        self.assertNotIn(0, [doc['price'] for doc in cursor])

        self.assertEqual(self.books.count_documents({'price': 0}), 14)

        # A cursor that hasn't started yet sees them
        cursor = self.books.find({}, {'price': 1})
        self.books.update_many({}, {'$inc': {'price': 1}})
        self.assertEqual({doc['price'] for doc in cursor}, {1})

    def test_scan(self):
        snapshot = self.books.scan()
        self.assertEqual(len(snapshot), 14)

        # Restartable; every iteration gives copies
        docs = list(snapshot)
        docs[0]['title'] = 'Modified'
        docs[1]['tags'].append('modified')
        self.assertEqual(titles(snapshot), TITLES)
        self.assertEqual(list(snapshot)[1]['tags'], ['classic', 'politics'])

        # Not affected by later changes
        self.books.insert_one({'title': 'Dune'})
        self.books.delete_many({'genre': 'Fiction'})
        self.assertEqual(len(snapshot), 14)
        self.assertEqual(titles(snapshot), TITLES)
        self.assertEqual(len(self.books), 10)

    def test_pipeline_snapshot(self):
        result = self.books.aggregate([{'$sort': {'price': 1}}, {'$project': {'_id': 0, 'price': 1}}])
        self.assertEqual(next(result), {'price': 7.99})
        self.books.delete_many({})
        self.assertEqual(len(list(result)), 13)

    def test_concurrent_writes(self):
        books = self.books
        books.create_index('worker')
        books.insert_one({'_id': 'counter', 'n': 0})

        n_workers, n_docs = 4, 50
        errors = []

        def writer(worker):
            try:
                for i in range(n_docs):
                    books.insert_one({'worker': worker, 'n': i})
                    books.update('counter', {'$inc': {'n': 1}})
                books.update_many({'worker': worker}, {'$set': {'done': True}})
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(20):
                    # Every snapshot is consistent: the index agrees with the documents
                    docs = books.find({'worker': {'$gte': 0}}).to_list()
                    self.assertTrue(all(doc['worker'] >= 0 for doc in docs))
                    self.assertEqual(len(docs), len({doc['_id'] for doc in docs}))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(n_workers)]
        threads += [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])

        # Everything is in place
        self.assertEqual(len(books), 14 + 1 + n_workers * n_docs)
        self.assertEqual(books.get('counter')['n'], n_workers * n_docs)
        for w in range(n_workers):
            self.assertEqual(books.count_documents({'worker': w}), n_docs)
            self.assertEqual(books.count_documents({'worker': w, 'done': True}), n_docs)

        # Indexes are consistent with the documents
        self.assertEqual(len(books.indexes['worker_1']), len(books))
        self.assertEqual(len(books.indexes['_id_']), len(books))
        self.assertEqual(books.explain({'worker': 1})['consideredDocsCount'], n_docs)

    def test_concurrent_deletes(self):
        books = self.books
        books.insert_many([{'batch': i % 5} for i in range(100)])
        counts = []

        def deleter(batch):
            counts.append(books.delete_many({'batch': batch}))

        threads = [threading.Thread(target=deleter, args=(b,)) for b in range(5)]
        threads += [threading.Thread(target=deleter, args=(b,)) for b in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Every document was deleted exactly once
        self.assertEqual(sorted(counts), [0] * 5 + [20] * 5)
        self.assertEqual(titles(books.find()), TITLES)
