"""

If you know how to query documents in MongoDB, you can query your collections with the same language.
MongoMem uses the familiar [MongoDB Query Operators](https://docs.mongodb.com/manual/reference/operator/query/)
language.

Query Object Syntax
-------------------

A Query Object is a dict that lets you sort, filter, paginate, and do other things.
It is an object with the following properties:

* `project`: [Project Operation](#project-operation) selects the fields to be returned
* `sort`: [Sort Operation](#sort-operation) determines the ordering of the results
* `filter`: [Filter Operation](#filter-operation) filters the results, using your criteria
* `skip`, `limit`: [Slicing](#slice-operation): paginates the results
* `count`: [Counting](#count-operation) counts the number of documents without producing them

An example Query Object is:

```python
{
  'project': ['title', 'author'],  # Only return these fields
  'sort': ['published_year-'],  # Newest first
  'filter': {
    'genre': 'Fiction',
    'price': { '$lt': 20 },
  },
  'limit': 10,  # 10 per page
  'skip': 20,  # Third page
}
```

Aggregation pipelines have their own handlers, one per stage:
`$match` (a MongoFilter), `$project` (MongoComputedProject), `$group`, `$sort`, `$skip`, `$limit`, `$count`.

Detailed syntax for every operation is provided in the relevant modules.
"""

from .project import MongoProject, MongoComputedProject
from .sort import MongoSort
from .group import MongoGroup
from .filter import MongoFilter, \
    FilterExpressionBase, FilterBooleanExpression, FilterFieldExpression
from .aggregate import AccumulatorBase, ACCUMULATORS, parse_accumulator
from .limit import MongoLimit
from .count import MongoCount, MongoCountStage
from .update import MongoUpdate
