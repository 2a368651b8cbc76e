# Import all SQLAlchemy models so Alembic autogenerate can discover tables via Base.metadata.
# Alembic's env.py imports this package for side effects.

from .user_model import AuthSession, User  # noqa: F401
from .character_model import Character  # noqa: F401
from .chat_models import Conversation, Message  # noqa: F401
