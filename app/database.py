"""
데이터베이스 연결 설정
SQLAlchemy를 사용한 데이터베이스 관리
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import settings


def build_engine(database_url: str):
    """URL 에 맞는 엔진 생성 (SQLite 는 스레드 공유 및 외래키 활성화)"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}

    new_engine = create_engine(
        database_url,
        pool_pre_ping=True,   # 연결 검사
        connect_args=connect_args,
    )

    if database_url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_fk(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


# 데이터베이스 엔진 생성
engine = build_engine(settings.database_url)

# 세션 팩토리 생성
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 모델 기본 클래스
Base = declarative_base()


def init_db(bind=None):
    """모든 모델을 등록하고 테이블 생성"""
    from app.models import booking, schedule_conflict, slot, system_log, visitor  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """데이터베이스 세션 의존성"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
