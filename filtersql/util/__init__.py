from .counting_query_wrapper import CountingQuery
from .settings_dict import QuerySettingsDict
