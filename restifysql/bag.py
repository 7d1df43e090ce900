from enum import Enum
from itertools import chain

from sqlalchemy import inspect, TypeDecorator
from sqlalchemy import Column, JSON

from typing import Union, Set, Mapping, Iterable, Tuple, FrozenSet, List, Any, Optional
from sqlalchemy.orm import ColumnProperty, RelationshipProperty
from sqlalchemy.orm.interfaces import MapperProperty
from sqlalchemy.sql.type_api import TypeEngine

from .exc import InvalidQueryError


class FieldKind(Enum):
    """ The kind of a model field, as seen by the write path """
    SCALAR = 'scalar'
    EMBEDDED = 'embedded'
    SINGULAR_REFERENCE = 'singular_reference'
    REFERENCE_COLLECTION = 'reference_collection'


class ResourceModel:
    """ Resource Model is the class that lets you get information about the model's fields.

    This is the class that binds them all together: Columns, Relationships, the identity, the version.
    All the meta-information about a certain Model is stored here:

    - Columns (with dot-notation access into JSON columns)
    - Relationships
    - Columns of related models
    - The identity (primary key) field
    - The version field, if the mapper has one
    - `field_kinds`: every field name mapped to its FieldKind

    A ResourceModel is read-only once initialized and is shared between all requests.
    """
    __resources_per_model_cache = {}

    @classmethod
    def for_model(cls, model: type) -> 'ResourceModel':
        """ Get the resource model for a model.

        Please use this method over __init__(), because it initializes a model only once
        """
        try:
            return cls.__resources_per_model_cache[model]
        except KeyError:
            cls.__resources_per_model_cache[model] = resource = cls(model)
            return resource

    def __init__(self, model: type):
        """ Init bags

        :param model: Model
        :raises ValueError: the model has a composite primary key
        """
        insp = inspect(model)

        # We don't tolerate aliases here
        if insp.is_aliased_class:
            raise TypeError('ResourceModel does not tolerate aliased() models')

        # Initialize
        self.model = model
        self.model_name = model.__name__

        # Init bags: after every attribute type
        self.columns = self._init_columns(model, insp)
        self.relations = self._init_relations(model, insp)
        self.related_columns = self._init_related_columns(model, insp)
        self.pk = self._init_primary_key(model, insp)

        # Identity & version
        self.identity = self._init_identity(model, insp)
        self.version = self._init_version(model, insp)

        # Field kinds
        self.field_kinds = self._init_field_kinds(model, insp)

    # region: Initialize bags

    def _init_columns(self, model, insp):
        """ Initialize: Column properties """
        return DotColumnsBag(_get_model_columns(model, insp))

    def _init_relations(self, model, insp):
        """ Initialize: Relationships """
        return RelationshipsBag(_get_model_relationships(model, insp))

    def _init_related_columns(self, model, insp):
        """ Initialize: Related columns """
        return DotRelatedColumnsBag(_get_model_relationships(model, insp))

    def _init_primary_key(self, model, insp):
        """ Initialize: Primary key columns """
        return ColumnsBag({insp.get_property_by_column(c).key: getattr(model, insp.get_property_by_column(c).key)
                           for c in insp.primary_key})

    def _init_identity(self, model, insp) -> str:
        """ Initialize: the name of the identity field """
        if len(self.pk.names) != 1:
            raise ValueError('Model {} must have exactly one primary key column, has: {!r}'
                             .format(self.model_name, sorted(self.pk.names)))
        return next(iter(self.pk.names))

    def _init_version(self, model, insp) -> Optional[str]:
        """ Initialize: the name of the version field, if any """
        if insp.version_id_col is None:
            return None
        return insp.get_property_by_column(insp.version_id_col).key

    def _init_field_kinds(self, model, insp) -> Mapping[str, FieldKind]:
        """ Initialize: field name => FieldKind """
        kinds = {}
        for name, col in self.columns:
            kinds[name] = FieldKind.EMBEDDED if self.columns.is_column_json(name) else FieldKind.SCALAR
        for name, rel in self.relations:
            kinds[name] = (FieldKind.REFERENCE_COLLECTION
                           if self.relations.is_relationship_array(name) else
                           FieldKind.SINGULAR_REFERENCE)
        return kinds

    # endregion

    @property
    def identity_column(self) -> MapperProperty:
        """ The identity attribute: `Model.<identity>` """
        return self.pk[self.identity]

    def kind(self, name: str) -> Optional[FieldKind]:
        """ Get the FieldKind of a field, or None if there's no such field """
        return self.field_kinds.get(name)

    def target(self, name: str) -> 'ResourceModel':
        """ Get the resource model a reference field points to """
        return self.for_model(self.relations.get_target_model(name))

    def coerce_identity(self, value: Any) -> Any:
        """ Convert an identity value that came from the outside world to the type of the identity column

        :raises InvalidQueryError: the value can't be converted
        """
        try:
            python_type = self.identity_column.type.python_type
        except NotImplementedError:
            return value

        if value is None or isinstance(value, python_type):
            return value

        try:
            return python_type(value)
        except (TypeError, ValueError):
            raise InvalidQueryError('Invalid {} identity: {!r}'.format(self.model_name, value))

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self.model_name)


class _PropertiesBagBase:
    """ Base class for Property bags:

    A container that keeps meta-information on SqlAlchemy stuff, like:
    - Columns
    - Primary keys
    - Relations
    - Related columns
    """

    def __contains__(self, name: str) -> bool:
        raise NotImplementedError

    def __getitem__(self, name: str) -> MapperProperty:
        raise NotImplementedError

    @property
    def names(self) -> FrozenSet[str]:
        """ Get the set of names """
        raise NotImplementedError

    def __iter__(self) -> Iterable[Tuple[str, MapperProperty]]:
        """ Get all items """
        raise NotImplementedError

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        """ Get the names of invalid items

        Use this for validation.
        """
        return set(names) - self.names


class ColumnsBag(_PropertiesBagBase):
    """ Columns bag

    Contains meta-information about columns:
    - which of them are JSON
    - list of their names
    - getting a column by name: bag[column_name]
    """

    def __init__(self, columns: Mapping[str, ColumnProperty]):
        self._columns = columns
        self._column_names = frozenset(self._columns.keys())
        self._json_column_names = frozenset(name
                                            for name, col in self._columns.items()
                                            if _is_column_json(col))

    @property
    def names(self) -> FrozenSet[str]:
        return self._column_names

    def __iter__(self) -> Iterable[Tuple[str, ColumnProperty]]:
        return iter(self._columns.items())

    def __contains__(self, name: str) -> bool:
        return name in self._column_names

    def __getitem__(self, column_name: str) -> ColumnProperty:
        return self._columns[column_name]

    def is_column_json(self, name: str) -> bool:
        return get_plain_column_name(name) in self._json_column_names


class DotColumnsBag(ColumnsBag):
    """ Columns bag with additional capabilities:

        - For JSON fields: field.prop.prop -- dot-notation access to sub-properties
    """

    def __contains__(self, name: str) -> bool:
        column_name, path = _dot_notation(name)
        if path and column_name not in self._json_column_names:
            return False
        return super(DotColumnsBag, self).__contains__(column_name)

    def __getitem__(self, name: str):
        column_name, path = _dot_notation(name)
        col = super(DotColumnsBag, self).__getitem__(column_name)
        # JSON path
        if path:
            if self.is_column_json(column_name):
                col = col[tuple(path)] if len(path) > 1 else col[path[0]]
            else:
                raise KeyError(name)
        return col

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        return {name for name in names if name not in self}


class RelationshipsBag(_PropertiesBagBase):
    """ Relationships bag

    Keeps track of relationships of a model.
    """

    def __init__(self, relationships: Mapping[str, RelationshipProperty]):
        self._relations = relationships
        self._rel_names = frozenset(self._relations.keys())
        self._array_rel_names = frozenset(name
                                          for name, rel in self._relations.items()
                                          if _is_relationship_array(rel))

    def is_relationship_array(self, name: str) -> bool:
        """ Is the relationship an array relationship? """
        return name in self._array_rel_names

    @property
    def names(self) -> FrozenSet[str]:
        return self._rel_names

    def __iter__(self) -> Iterable[Tuple[str, RelationshipProperty]]:
        return iter(self._relations.items())

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def __getitem__(self, name: str) -> RelationshipProperty:
        return self._relations[name]

    def get_target_model(self, name: str) -> type:
        """ Get target model of a relationship """
        return self[name].property.mapper.class_

    def get_local_column_names(self, name: str) -> FrozenSet[str]:
        """ Get the names of the local columns a relationship depends upon (e.g. foreign keys) """
        prop = self[name].property
        return frozenset(prop.parent.get_property_by_column(c).key
                         for c in prop.local_columns)


class DotRelatedColumnsBag(ColumnsBag):
    """ Relationships bag that supports dot-notation for referencing columns of a related model """

    def __init__(self, relationships: Mapping[str, RelationshipProperty]):
        self._rel_bag = RelationshipsBag(relationships)

        #: Dot-notation mapped to columns: 'rel.col' => Column
        related_columns = {}
        for rel_name, relation in self._rel_bag:
            model = relation.property.mapper.class_
            for col_name, col in _get_model_columns(model, inspect(model)).items():
                related_columns['{}.{}'.format(rel_name, col_name)] = col

        super(DotRelatedColumnsBag, self).__init__(related_columns)

    def is_column_json(self, name: str) -> bool:
        # not dot-notation filter like in the parent class: check as is!
        return name in self._json_column_names

    def get_relationship_name(self, col_name: str) -> str:
        return _dot_notation(col_name)[0]

    def get_relationship(self, col_name: str) -> RelationshipProperty:
        return self._rel_bag[self.get_relationship_name(col_name)]

    def is_relationship_array(self, col_name: str) -> bool:
        """ Is this relationship an array?

            This method accepts both relationship names and its column names.
        """
        return self._rel_bag.is_relationship_array(get_plain_column_name(col_name))


class CombinedBag(_PropertiesBagBase):
    """ A bag that combines elements from multiple bags.

    In order to initialize it, you give them the bags you need as a dict:

        cbag = CombinedBag(
            col=resource.columns,
            rcol=resource.related_columns,
        )

    Now, when you get an item, you get the name of the bag it's come from:

        bag_name, bag, col = cbag['id']
        bag_name  #-> 'col'
        bag  #-> resource.columns
        col  #-> Customer._id
    """

    def __init__(self, **bags):
        self._bags = bags

        # Combined names from all bags
        self._names = frozenset(chain(*(bag.names for bag in bags.values())))

        # Combined lookup by name from all bags
        self._bag_name_lookup_by_column_name = {
            column_name: bag_name
            for bag_name, bag in self._bags.items()
            for column_name, column in bag
        }

        # List of JSON columns: they're reachable with dot-notation
        self._json_column_names = frozenset(chain(*(bag._json_column_names
                                                    for bag in self._bags.values()
                                                    if isinstance(bag, DotColumnsBag))))

    def __contains__(self, name: str) -> bool:
        if name in self._names:
            return True
        # It might be a JSON column
        return get_plain_column_name(name) in self._json_column_names

    def __getitem__(self, name: str) -> Tuple[str, _PropertiesBagBase, Any]:
        # Get the column name: remove the '.'-notation only if the column is a json column
        plain_name = get_plain_column_name(name)
        plain_name = plain_name if plain_name in self._json_column_names else name
        # Locate the bag by quick lookup
        bag_name = self._bag_name_lookup_by_column_name[plain_name]
        bag = self._bags[bag_name]
        return (bag_name, bag, bag[name])

    def get_invalid_names(self, names: Iterable[str]) -> Set[str]:
        return {name for name in names if name not in self}

    @property
    def names(self) -> FrozenSet[str]:
        return self._names

    def __iter__(self):
        return (
            (bag_name, bag, column_name, column)
            for bag_name, bag in self._bags.items()
            for column_name, column in bag
        )


def _get_model_columns(model, ins):
    """ Get a dict of model columns """
    return {name: getattr(model, name)
            for name, c in ins.column_attrs.items()
            # ignore Labels and other stuff that .items() will always yield
            if isinstance(c.expression, Column)
            }


def _get_model_relationships(model, ins):
    """ Get a dict of model relationships """
    return {name: getattr(model, name)
            for name, c in ins.relationships.items()}


def _get_column_type(col: MapperProperty) -> TypeEngine:
    """ Get column's SQL type """
    if isinstance(col.type, TypeDecorator):
        # Type decorators wrap other types, so we have to handle them carefully
        return col.type.impl
    else:
        return col.type


def _is_column_json(col: MapperProperty) -> bool:
    """ Is the column a JSON column? (any dialect) """
    return isinstance(_get_column_type(col), JSON)


def _is_relationship_array(rel: RelationshipProperty) -> bool:
    """ Is the relationship an array relationship? """
    return rel.property.uselist


def _dot_notation(name: str) -> Tuple[str, List[str]]:
    """ Split a property name that's using dot-notation.

    This is used to navigate the internals of JSON types:

        "json_column.property.property"
    """
    path = name.split('.')
    return path[0], path[1:]


def get_plain_column_name(name: str) -> str:
    """ Get a plain column name, dropping any dot-notation that may follow """
    return name.split('.')[0]
