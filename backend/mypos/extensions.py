# Overview: Flask extension instances for database, migrations, response cache and rate limiting.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.cache_service import ResponseCache
from .services.rate_limit_service import RateLimiter

db = SQLAlchemy()
migrate = Migrate()
cache = ResponseCache()
rate_limiter = RateLimiter()
