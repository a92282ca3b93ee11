# Overview: Shared extension instances for database, migrations, cache and domain events.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .cache import TTLCache
from .events import EventBus

db = SQLAlchemy()
migrate = Migrate()
cache = TTLCache()
events = EventBus()
