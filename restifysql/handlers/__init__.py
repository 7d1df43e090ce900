"""
Query Options are translated into an SQL statement by a set of handlers, one per option.
Every handler receives its part of the Query Options with input(), validates it,
and alters the statement with alter_query().

An example of Query Options:

```javascript
{
  filter: {
    // Filter condition
    age: { $gte: 18 },  // Age >= 18
    'account.name': 'Acme',  // through a reference
  },
  select: 'name email',  // Only fetch these fields
  sort: '-age',  // Sort by age, descending
  skip: 10,  // Skip first 10 rows
  limit: 100,  // Display 100 per page
  populate: 'account',  // Load the referenced account
}
```

Detailed syntax for every option is provided in the relevant handler module.
"""

from .base import QueryHandlerBase
from .filter import FilterHandler, \
    FilterExpressionBase, FilterBooleanExpression, FilterColumnExpression, FilterRelatedColumnExpression
from .project import ProjectHandler
from .populate import PopulateHandler, PopulateNode
from .sort import SortHandler
from .limit import LimitHandler
from .distinct import DistinctHandler
from .count import CountHandler
from .read_preference import ReadPreferenceHandler
