from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

SEQUENCE_NAMES = ("sales_order", "invoice")


def make_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # worker threads and the API threadpool share the engine
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(session_factory):
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine, session_factory):
    """Create tables and seed the number sequences."""
    from . import models

    Base.metadata.create_all(bind=engine)
    with session_scope(session_factory) as db:
        for name in SEQUENCE_NAMES:
            if db.get(models.NumberSequence, name) is None:
                db.add(models.NumberSequence(name=name, value=0))


def drop_db(engine):
    Base.metadata.drop_all(bind=engine)
