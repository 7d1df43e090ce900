"""
### Access levels

Every field of a model is visible to everyone, unless it's listed as `protected` or `private`:

* `public` callers can't see `protected` and `private` fields
* `protected` callers can't see `private` fields
* `private` callers see everything

The exclusions are configured once, and precomputed into an `ExcludedMap`:

```python
excluded_map = ExcludedMap() \
    .add('Customer', private=('credit_card',), protected=('email',)) \
    .add('Account', private=('secret',))
```

Excluded fields are removed from the incoming write payloads, are never loaded
from the database, and are never populated when they are references.
A field of an embedded document is referenced with dot-notation: `address.zip`.
"""

from enum import Enum
from typing import Mapping, Iterable, FrozenSet, Optional, Any

from .bag import ResourceModel


class Access(Enum):
    """ Access level of the caller """
    PUBLIC = 'public'
    PROTECTED = 'protected'
    PRIVATE = 'private'


class ExcludedMap(dict):
    """ Model name => {Access: frozenset(field names)}

        Built once at start-up and shared between concurrent requests: don't modify it afterwards.
    """

    def add(self, model_name: str, private: Iterable[str] = (), protected: Iterable[str] = ()) -> 'ExcludedMap':
        """ Register the private and protected fields of a model """
        private = frozenset(private)
        protected = frozenset(protected)
        self[model_name] = {
            Access.PUBLIC: private | protected,
            Access.PROTECTED: private,
            Access.PRIVATE: frozenset(),
        }
        return self

    def get_excluded(self, model_name: str, access: Access) -> FrozenSet[str]:
        """ Get the set of fields excluded for the given access level """
        return self.get(model_name, {}).get(access, frozenset())


class AccessContext:
    """ The caller: its access level, its identity, and (optionally) its own exclusions map

        When `excluded_map` is None, the map configured on the operations object is used.
    """
    __slots__ = ('level', 'identity', 'excluded_map')

    def __init__(self, level: Access = Access.PUBLIC, identity: Any = None, excluded_map: Optional[ExcludedMap] = None):
        self.level = level
        self.identity = identity
        self.excluded_map = excluded_map

    def __repr__(self):
        return '{}(level={}, identity={!r})'.format(self.__class__.__name__, self.level.value, self.identity)


class ResourceFilter:
    """ Field-level access filter for one model """

    def __init__(self, model: type):
        self.resource = ResourceModel.for_model(model)

    def get_excluded(self, access: Access, excluded_map: Optional[ExcludedMap]) -> FrozenSet[str]:
        """ Get the names of the fields excluded for the access level """
        if not excluded_map:
            return frozenset()
        return excluded_map.get_excluded(self.resource.model_name, access)

    def is_excluded(self, field: Optional[str], access: Access, excluded_map: Optional[ExcludedMap]) -> bool:
        """ Test whether a field is excluded for the access level.

            A field nested into an excluded field is excluded as well.
        """
        if not field:
            return False
        excluded = self.get_excluded(access, excluded_map)
        path = field.split('.')
        return any('.'.join(path[:i]) in excluded
                   for i in range(1, len(path) + 1))

    def filter_object(self, body: Mapping, access: Access, excluded_map: Optional[ExcludedMap], populate=()) -> dict:
        """ Get a copy of `body` without the fields excluded for the access level

            :param body: The document to filter
            :param populate: PopulateDirective-s: the references that hold populated sub-documents.
                Those are filtered with the exclusions of the referenced model.
        """
        ret = remove_paths(body, self.get_excluded(access, excluded_map))
        for directive in populate:
            self._filter_populated(ret, directive.path.split('.'), access, excluded_map)
        return ret

    def _filter_populated(self, doc: dict, path, access, excluded_map):
        """ Filter the sub-documents populated at `path` """
        name, rest = path[0], path[1:]
        if name not in self.resource.relations or name not in doc:
            return

        target = ResourceFilter(self.resource.relations.get_target_model(name))
        value = doc[name]

        items = []
        for item in (value if isinstance(value, list) else [value]):
            if isinstance(item, Mapping):
                item = target.filter_object(item, access, excluded_map)
                if rest:
                    target._filter_populated(item, rest, access, excluded_map)
            items.append(item)

        doc[name] = items if isinstance(value, list) else items[0]


def remove_paths(doc: Mapping, paths: Iterable[str]) -> dict:
    """ Get a copy of a dict with the given paths removed

        Paths use dot-notation, which reaches into nested objects and lists of objects.
    """
    top = set()
    nested = {}
    for path in paths:
        head, _, tail = path.partition('.')
        if tail:
            nested.setdefault(head, set()).add(tail)
        else:
            top.add(head)

    ret = {}
    for key, value in doc.items():
        if key in top:
            continue
        if key in nested:
            if isinstance(value, Mapping):
                value = remove_paths(value, nested[key])
            elif isinstance(value, list):
                value = [remove_paths(v, nested[key]) if isinstance(v, Mapping) else v
                         for v in value]
        ret[key] = value
    return ret
