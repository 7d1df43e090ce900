from .crudhelper import CrudHelper, PositionalIds, Replaced, UNCHANGED, flatten_dots
from .request import OperationRequest, Result
from .operations import CrudOperations, default_context_filter, default_on_error
