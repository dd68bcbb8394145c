"""Flask extensions shared by the application factory and the blueprints."""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Attach a rate limiter to the app (protects all routes by default)
limiter = Limiter(get_remote_address)
