from .mongoquery_settings_handler import MongoQuerySettingsHandler
from .settings_dict import MongoQuerySettingsDict
