"""
MongoMem is an in-memory document store that you query like a MongoDB database.

Documents are plain Python dicts; collections keep them in memory, with indexes;
and you query them with the familiar MongoDB language:

```python
from mongomem import Database

db = Database('bookstore')
books = db.create_collection('books')
books.insert_many([
    {'title': 'To Kill a Mockingbird', 'author': 'Harper Lee', 'genre': 'Fiction', 'published_year': 1960},
    {'title': '1984', 'author': 'George Orwell', 'genre': 'Dystopian', 'published_year': 1949},
])

books.create_index({'author': 1, 'published_year': 1})
books.find({'published_year': {'$gt': 1950}}, {'title': 1, '_id': 0}).sort('title').to_list()
books.aggregate([
    {'$group': {'_id': '$genre', 'count': {'$sum': 1}}},
])
```

Nothing is persisted: the data lives as long as the `Database` object does.
"""

# Exceptions that are used here and there
from .exc import *

# The heart of MongoMem are the handlers:
# that's where every section of a Query Object, and every pipeline stage, is implemented.
from . import handlers

# MongoQuery parses a Query Object and runs it with the handlers, using indexes when it can
from .query import MongoQuery, QueryPlan

# MongoPipeline runs aggregation pipelines
from .pipeline import MongoPipeline

# Storage
from .index import Index, IndexManager
from .store import Collection, DocumentSnapshot, generate_object_id
from .cursor import Cursor
from .database import Database

# Settings objects for MongoQuery
from .util import MongoQuerySettingsDict
