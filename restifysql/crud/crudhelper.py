"""
The write path: incoming documents are sanitized before they get anywhere near the database.

```python
helper = CrudHelper(Customer)
changes = helper.sanitize({
    'name': 'Alice',
    'account': {'_id': 'A1', 'name': 'Acme'},
    'orders': [{'_id': 'O1'}, {'_id': 'O2'}],
    'address': {'city': 'X'},
}, Access.PUBLIC, excluded_map)
# -> {'name': 'Alice', 'account': 'A1', 'orders': {'0': 'O1', '1': 'O2'}, 'address.city': 'X'}

instance = await ssn.run_sync(helper.create_instance, changes)
```

1. Fields excluded for the caller are removed
2. The identity and the version fields are removed: they're never settable
3. Populated references are depopulated: a sub-document becomes its identity
4. Sub-documents are flattened into dot-notation paths: an update only touches the given paths
"""

from copy import deepcopy
from typing import Any, Mapping, NamedTuple, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..access import Access, ExcludedMap, ResourceFilter
from ..bag import FieldKind, ResourceModel
from .. import exc


class _UnchangedType:
    """ The value of a field is left as it is """
    __slots__ = ()

    def __bool__(self):
        return False

    def __repr__(self):
        return 'UNCHANGED'


UNCHANGED = _UnchangedType()


class Replaced(NamedTuple):
    """ The value of a field is replaced """
    value: Any


class PositionalIds(dict):
    """ A depopulated reference collection: str(position) => identity

        It's a leaf: flattening does not go into it
    """


class CrudHelper:
    """ Crud helper: sanitizes incoming documents, and applies them to instances

        This object is supposed to be initialized only once;
        don't do it for every request, keep it at the class level!
    """

    # The class to use for getting structural data from a model
    _RESOURCE_MODEL_CLS = ResourceModel
    # The class to use for field-level access filtering
    _RESOURCE_FILTER_CLS = ResourceFilter

    def __init__(self, model: type, resource_filter: Optional[ResourceFilter] = None):
        """ Init CRUD helper

        :param model: The model to work with
        :param resource_filter: The field-level access filter
        """
        self.model = model
        self.resource = self._RESOURCE_MODEL_CLS.for_model(model)
        self.resource_filter = resource_filter or self._RESOURCE_FILTER_CLS(model)

    # region Sanitize

    def sanitize(self, raw_body: Optional[Mapping], access: Access = Access.PUBLIC,
                 excluded_map: Optional[ExcludedMap] = None, populate=()) -> dict:
        """ Convert an incoming document into a flat dict of changes

        :param raw_body: The document submitted by the caller
        :param access: Access level of the caller
        :param excluded_map: The map of excluded fields
        :param populate: PopulateDirective-s of the request
        :raises exc.InvalidQueryError: the body is not an object
        """
        if raw_body is None:
            raw_body = {}
        if not isinstance(raw_body, Mapping):
            raise exc.InvalidQueryError('The value has to be an object, not {}'.format(type(raw_body).__name__))

        # Access
        body = self.resource_filter.filter_object(raw_body, access, excluded_map, populate)

        # Identity & version are never settable
        body.pop(self.resource.identity, None)
        if self.resource.version:
            body.pop(self.resource.version, None)

        # Depopulate & flatten
        return flatten_dots(self.depopulate(body))

    def depopulate(self, body: Mapping) -> dict:
        """ Replace populated references with their identities """
        return self._depopulate(body, self.resource)

    def _depopulate(self, body: Mapping, resource: Optional[ResourceModel]) -> dict:
        """ Depopulate a document

        :param resource: The model to look the fields up in.
            Nested documents have none: their keys are never references.
        """
        ret = {}
        for key, value in body.items():
            outcome = self._depopulate_field(resource, key, value)
            ret[key] = outcome.value if outcome is not UNCHANGED else value
        return ret

    def _depopulate_field(self, resource: Optional[ResourceModel], key: str, value: Any) -> Union[_UnchangedType, Replaced]:
        """ Depopulate one field: UNCHANGED | Replaced(value) """
        kind = resource.kind(key) if resource is not None else None

        # Collection: position => identity
        if kind is FieldKind.REFERENCE_COLLECTION and isinstance(value, (list, tuple)) \
                and any(isinstance(item, Mapping) for item in value):
            identity = resource.target(key).identity
            return Replaced(PositionalIds(
                (str(i), item.get(identity, item) if isinstance(item, Mapping) else item)
                for i, item in enumerate(value)
            ))

        # Singular: sub-document => identity. No identity: left as is
        if kind is FieldKind.SINGULAR_REFERENCE and isinstance(value, Mapping):
            identity = resource.target(key).identity
            return Replaced(value[identity]) if identity in value else UNCHANGED

        # Sub-document: go deeper
        if isinstance(value, Mapping):
            return Replaced(self._depopulate(value, None))

        return UNCHANGED

    # endregion

    # region Write

    def create_instance(self, ssn: Session, changes: Mapping) -> object:
        """ Create an instance from a sanitized dict of changes, and add it to the session

            This is a synchronous function: use it with AsyncSession.run_sync()

            :raises exc.InvalidColumnError: invalid field
            :raises exc.InvalidQueryError: a reference points to a missing record
        """
        instance = self.model()
        with ssn.no_autoflush:
            self._apply_changes(ssn, instance, changes, 'create')
        ssn.add(instance)
        return instance

    def update_instance(self, ssn: Session, instance: object, changes: Mapping) -> object:
        """ Update an instance with a sanitized dict of changes: a partial update

            Only the given paths are modified; all the rest is left intact.
            This is a synchronous function: use it with AsyncSession.run_sync()

            :raises exc.InvalidColumnError: invalid field
            :raises exc.InvalidQueryError: a reference points to a missing record
        """
        with ssn.no_autoflush:
            self._apply_changes(ssn, instance, changes, 'update')
        return instance

    def _apply_changes(self, ssn: Session, instance: object, changes: Mapping, action: str):
        for path, value in changes.items():
            name, _, subpath = path.partition('.')
            kind = self.resource.kind(name)

            if kind is None or (subpath and kind is not FieldKind.EMBEDDED):
                raise exc.InvalidColumnError(self.resource.model_name, path, action)
            elif kind is FieldKind.EMBEDDED and subpath:
                self._set_embedded_path(instance, name, subpath.split('.'), value)
            elif kind is FieldKind.SINGULAR_REFERENCE:
                setattr(instance, name, self._load_reference(ssn, name, value))
            elif kind is FieldKind.REFERENCE_COLLECTION:
                setattr(instance, name, self._load_reference_collection(ssn, name, value))
            else:
                setattr(instance, name, value)

    def _set_embedded_path(self, instance: object, name: str, path: list, value: Any):
        """ Set a value deep into a JSON column """
        doc = deepcopy(getattr(instance, name))
        if doc is None:
            doc = {}
        if not isinstance(doc, dict):
            raise exc.InvalidQueryError('Cannot set "{}.{}": the value is not an object'.format(name, '.'.join(path)))

        # Walk down, creating objects on the way
        target = doc
        for key in path[:-1]:
            if not isinstance(target.get(key), dict):
                target[key] = {}
            target = target[key]
        target[path[-1]] = value

        # Tell SqlAlchemy that a mutable value was updated
        setattr(instance, name, doc)
        flag_modified(instance, name)

    def _load_reference(self, ssn: Session, name: str, identity: Any) -> Optional[object]:
        """ Load the record a singular reference points to """
        if identity is None:
            return None
        if isinstance(identity, Mapping):
            raise exc.InvalidQueryError('{}.{}: a referenced document must have an identity'
                                        .format(self.resource.model_name, name))

        target = self.resource.target(name)
        referenced = ssn.get(target.model, target.coerce_identity(identity))
        if referenced is None:
            raise exc.InvalidQueryError('{}.{}: {} not found: {!r}'
                                        .format(self.resource.model_name, name, target.model_name, identity))
        return referenced

    def _load_reference_collection(self, ssn: Session, name: str, identities: Any) -> list:
        """ Load the records of a reference collection, in their positional order """
        if identities is None:
            return []
        if isinstance(identities, Mapping):
            identities = [v for k, v in sorted(identities.items(), key=lambda kv: int(kv[0]))]
        if not isinstance(identities, (list, tuple)):
            raise exc.InvalidQueryError('{}.{} must be an array'.format(self.resource.model_name, name))

        if any(isinstance(identity, Mapping) for identity in identities):
            raise exc.InvalidQueryError('{}.{}: a referenced document must have an identity'
                                        .format(self.resource.model_name, name))

        target = self.resource.target(name)
        identities = [target.coerce_identity(identity) for identity in identities]
        if not identities:
            return []

        found = {
            getattr(referenced, target.identity): referenced
            for referenced in ssn.scalars(select(target.model).where(target.identity_column.in_(set(identities))))
        }
        missing = [identity for identity in identities if identity not in found]
        if missing:
            raise exc.InvalidQueryError('{}.{}: {} not found: {!r}'
                                        .format(self.resource.model_name, name, target.model_name, missing))
        return [found[identity] for identity in identities]

    # endregion


def flatten_dots(doc: Mapping, prefix: str = '') -> dict:
    """ Flatten nested objects into dot-notation paths

        {a: {b: 1}} -> {'a.b': 1}

        Empty objects and PositionalIds are leaves. Flattening a flat dict gives the same dict.
    """
    ret = {}
    for key, value in doc.items():
        path = prefix + key
        if isinstance(value, Mapping) and value and not isinstance(value, PositionalIds):
            ret.update(flatten_dots(value, path + '.'))
        else:
            ret[path] = value
    return ret
