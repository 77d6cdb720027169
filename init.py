from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base
import config


def get_session(database_url: str = None):
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    url = database_url or config.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(url, connect_args=connect_args)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)


Session, _engine = get_session()
