from thumbreel.models.base import Base
from thumbreel.models.database import create_db_engine, create_session_maker, get_sync_db, init_db
from thumbreel.models.user import User, UserMedia

__all__ = [
    "Base",
    "User",
    "UserMedia",
    "create_db_engine",
    "create_session_maker",
    "get_sync_db",
    "init_db",
]
