# backend/app/db/session.py

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.db.base import Base


def build_engine(url: str, **kwargs) -> Engine:
    """
    엔진 생성.

    SQLite(pysqlite)는 기본 설정으로는 SAVEPOINT 가 제대로 동작하지 않으므로
    BEGIN 을 직접 내보내도록 이벤트를 건다. 동기화 엔진이 쓰기마다
    begin_nested() 를 사용하기 때문.
    """
    engine = create_engine(url, future=True, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def init_db() -> None:
    """
    애플리케이션 시작 시 한 번 호출해서 테이블 생성.
    모든 도메인 모델을 메타데이터에 등록한 뒤 create_all 을 수행한다.
    """
    import app.domain.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
