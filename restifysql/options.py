"""
### Query Options

Every request carries a set of query options: parsed from the query string by the web layer,
and handed over to the operations as a dict (or as a ready `QueryOptions` object):

```javascript
$.get('/api/customer?' + $.param({
    filter: JSON.stringify({ name: { $prefix: 'A' } }),  // WHERE name LIKE 'A%'
    select: 'name email',  // only load these fields
    sort: '-name',  // ORDER BY name DESC
    skip: 20, limit: 10,  // pagination
    populate: 'account,orders',  // load the referenced records
}))
```

The following keys are supported:

* `filter` (alias: `query`): selection criteria, see the Filter handler
* `select`: projection, see the Project handler
* `sort`: sort specification, see the Sort handler
* `skip`, `limit`: pagination; non-negative integers, or `null`
* `populate`: references to expand; `"a,b"`, `["a", "b"]`, or `[{path: "a", select: "x y"}]`
* `distinct`: the name of a field to get the distinct values of
* `read_preference`: a read-consistency hint
"""

from typing import NamedTuple, Optional, Tuple, Union, Mapping, Any

from .exc import InvalidQueryError


class PopulateDirective(NamedTuple):
    """ A request to expand a reference field

        path: name of the reference field; dot-notation goes deeper: 'orders.items'
        select: projection for the referenced records; same syntax as the `select` option
    """
    path: str
    select: Union[str, list, dict, None] = None


class QueryOptions(NamedTuple):
    """ Per-request query options. Immutable. """
    filter: Optional[dict] = None
    select: Union[str, list, dict, None] = None
    sort: Union[str, list, dict, None] = None
    skip: Optional[int] = None
    limit: Optional[int] = None
    populate: Tuple[PopulateDirective, ...] = ()
    distinct: Optional[str] = None
    read_preference: Optional[str] = None

    @classmethod
    def from_dict(cls, query_object: Optional[Mapping[str, Any]]) -> 'QueryOptions':
        """ Make QueryOptions from a parsed query string

            :raises InvalidQueryError: unknown keys, or invalid values
        """
        if query_object is None:
            return cls()
        if isinstance(query_object, QueryOptions):
            return query_object
        if not isinstance(query_object, Mapping):
            raise InvalidQueryError('Query options must be an object')

        query_object = dict(query_object)

        # Alias
        if 'query' in query_object:
            if 'filter' in query_object:
                raise InvalidQueryError('Use either `filter` or `query`, but not both')
            query_object['filter'] = query_object.pop('query')

        # Check if keys are all right
        invalid_keys = set(query_object.keys()) - set(cls._fields)
        if invalid_keys:
            raise InvalidQueryError('Unknown query options: {}'.format(', '.join(sorted(invalid_keys))))

        # Validate
        if not isinstance(query_object.get('filter'), (dict, NoneType)):
            raise InvalidQueryError('Filter criteria must be one of: null, object')
        for name in ('skip', 'limit'):
            value = query_object.get(name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise InvalidQueryError('{} must be either a non-negative integer, or null'.format(name.capitalize()))
        if not isinstance(query_object.get('distinct'), (str, NoneType)):
            raise InvalidQueryError('Distinct must be a field name')

        # Normalize
        query_object['populate'] = parse_populate(query_object.get('populate'))
        return cls(**query_object)


def parse_populate(populate) -> Tuple[PopulateDirective, ...]:
    """ Parse the `populate` option into a tuple of PopulateDirective

        Supported syntaxes:

        * 'account,orders' or 'account orders'
        * ['account', 'orders']
        * [{path: 'account', select: 'name'}]
        * {path: 'account', select: 'name'}
    """
    # Empty
    if not populate:
        return ()

    # Single object
    if isinstance(populate, (str, Mapping, PopulateDirective)):
        populate = [populate]

    if not isinstance(populate, (list, tuple)):
        raise InvalidQueryError('Populate must be one of: null, string, array, object; '
                                '{type} provided'.format(type=type(populate)))

    directives = []
    for item in populate:
        if isinstance(item, PopulateDirective):
            directives.append(item)
        elif isinstance(item, str):
            directives.extend(PopulateDirective(path) for path in item.replace(',', ' ').split())
        elif isinstance(item, Mapping):
            if not isinstance(item.get('path'), str) or not item['path']:
                raise InvalidQueryError('Populate: every object must have a `path`')
            invalid_keys = set(item.keys()) - {'path', 'select'}
            if invalid_keys:
                raise InvalidQueryError('Populate: unknown keys: {}'.format(', '.join(sorted(invalid_keys))))
            directives.extend(PopulateDirective(path, item.get('select'))
                              for path in item['path'].replace(',', ' ').split())
        else:
            raise InvalidQueryError('Populate: {type} is not a valid directive'.format(type=type(item)))
    return tuple(directives)


NoneType = type(None)
