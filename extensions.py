from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from config import Config


def _engine_options(url):
    if url.startswith("sqlite"):
        # Base en memoria compartida entre hilos (tests)
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool
        }
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300
    }


# DB
engine = create_engine(
    Config.DATABASE_URL,
    **_engine_options(Config.DATABASE_URL)
)
Session = scoped_session(sessionmaker(bind=engine))


def get_db():
    return Session()


def init_extensions(app):
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        Session.remove()
