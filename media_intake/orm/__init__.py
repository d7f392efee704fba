from media_intake.orm.session import dispose_engine
from media_intake.orm.session import get_session_factory
from media_intake.orm.session import initialize_engine
from media_intake.orm.transaction import transactional


__all__ = [
    "dispose_engine",
    "get_session_factory",
    "initialize_engine",
    "transactional",
]
