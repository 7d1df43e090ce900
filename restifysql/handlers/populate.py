"""
### Populate

Population replaces a reference with the record it points to.
It's the eager loading of relationships: every populated reference is loaded with
one additional `SELECT .. WHERE .. IN (..)` query, no matter how many records there are.

```javascript
$.get('/api/customer?' + $.param({
    populate: 'account orders',
}))
```

Every populated reference can have its own projection:

```javascript
{ populate: [ {path: 'account', select: 'name'} ] }
```

Dot-notation populates nested references: `orders.items` loads the orders, and the items of every order.

References that the caller is not allowed to see are silently left unpopulated.
"""

from collections import OrderedDict

from sqlalchemy.orm import selectinload

from .base import QueryHandlerBase
from .project import ProjectHandler
from ..access import Access
from ..exc import InvalidRelationError


class PopulateNode:
    """ A populated reference: its projection, and the references populated beneath it """
    __slots__ = ('name', 'relation', 'resource', 'select', 'project', 'children')

    def __init__(self, name, relation, resource):
        self.name = name
        self.relation = relation
        self.resource = resource
        self.select = None
        #: ProjectHandler for the referenced model
        self.project = None
        #: name => PopulateNode
        self.children = OrderedDict()

    def __repr__(self):
        return '{}({}, children={!r})'.format(self.__class__.__name__, self.name, list(self.children))

    def compile_options(self):
        """ Get the loader option for this reference """
        options = self.project.compile_options() + [child.compile_options() for child in self.children.values()]
        loader = selectinload(self.relation)
        return loader.options(*options) if options else loader

    def pluck(self, value):
        """ Convert a loaded reference (an instance, a list, or None) into documents """
        if value is None:
            return None
        if isinstance(value, (list, tuple, set)):
            return [self.pluck_instance(instance) for instance in value]
        return self.pluck_instance(value)

    def pluck_instance(self, instance):
        dct = self.project.pluck_instance(instance)
        for name, child in self.children.items():
            dct[name] = child.pluck(getattr(instance, name))
        return dct


class PopulateHandler(QueryHandlerBase):
    """ Population of references

        Input: a tuple of PopulateDirective(path, select)
    """

    query_options_field_name = 'populate'

    def __init__(self, model, resource):
        super(PopulateHandler, self).__init__(model, resource)

        # On input
        #: name => PopulateNode
        self.nodes = OrderedDict()

    def _get_supported_bags(self):
        return self.resource.relations

    def input(self, directives, access=Access.PUBLIC, excluded_map=None):
        """ Receive the populate directives

            :param directives: PopulateDirective-s
            :param access: Access level of the caller
            :param excluded_map: The map of excluded fields
            :type excluded_map: restifysql.access.ExcludedMap | None
            :raises InvalidRelationError: a path segment is not a reference
        """
        super(PopulateHandler, self).input(directives)

        for directive in directives or ():
            self._add_path(directive.path.split('.'), directive.select, access, excluded_map)

        # Build the projections
        for node in self._walk(self.nodes):
            excluded = excluded_map.get_excluded(node.resource.model_name, access) if excluded_map else frozenset()
            node.project = ProjectHandler(node.resource.model, node.resource).input(node.select, excluded)
            # Local columns of nested references must be loaded
            for child in node.children.values():
                node.project.merge_quietly(node.resource.relations.get_local_column_names(child.name))

        return self

    def _add_path(self, path, select, access, excluded_map):
        """ Add a dotted path to the tree of nodes """
        nodes = self.nodes
        resource = self.resource
        node = None
        for name in path:
            # Validate
            if name not in resource.relations:
                raise InvalidRelationError(resource.model_name, name, self.query_options_field_name)

            # Excluded references are not populated
            if excluded_map and name in excluded_map.get_excluded(resource.model_name, access):
                return

            if name not in nodes:
                nodes[name] = PopulateNode(name, resource.relations[name], resource.target(name))
            node = nodes[name]
            nodes, resource = node.children, node.resource

        # The projection applies to the last segment
        if select is not None:
            node.select = select

    @classmethod
    def _walk(cls, nodes):
        for node in nodes.values():
            yield node
            yield from cls._walk(node.children)

    @property
    def local_column_names(self):
        """ The names of the columns that the top-level populated references depend upon """
        return frozenset(name
                         for relation_name in self.nodes
                         for name in self.resource.relations.get_local_column_names(relation_name))

    def compile_options(self):
        return [node.compile_options() for node in self.nodes.values()]

    def alter_query(self, stmt):
        if not self.nodes:
            return stmt  # short-circuit
        return stmt.options(*self.compile_options())

    def pluck_instance(self, instance, dct):
        """ Add the populated references of an instance into its document """
        for name, node in self.nodes.items():
            dct[name] = node.pluck(getattr(instance, name))
        return dct
