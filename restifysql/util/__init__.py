from .reusable import Reusable
from .inspect import pluck_kwargs_from, get_function_defaults
from .settings_handler import TranslatorSettingsHandler
from .settings_dict import QueryTranslatorSettingsDict, OperationSettingsDict
from .maybe_await import maybe_await
