# Imports every model so Base.metadata knows all tables (alembic / create_all).
from marketchat.models.users import User  # noqa: F401
from marketchat.models.conversations import Conversation  # noqa: F401
from marketchat.models.messages import Message  # noqa: F401
