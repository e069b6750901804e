from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./interview_coach.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def get_session_factory() -> sessionmaker:
	# Engine stores outlive a single request, so they get the factory rather than a session
	return SessionLocal


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	if "interview_sessions" in tables:
		cols = {c["name"] for c in inspector.get_columns("interview_sessions")}
		with engine.begin() as conn:
			if "current_question" not in cols:
				conn.exec_driver_sql("ALTER TABLE interview_sessions ADD COLUMN current_question TEXT")
			if "industry" not in cols:
				conn.exec_driver_sql("ALTER TABLE interview_sessions ADD COLUMN industry VARCHAR(128)")
	if "interactions" in tables:
		cols = {c["name"] for c in inspector.get_columns("interactions")}
		with engine.begin() as conn:
			if "submission_id" not in cols:
				conn.exec_driver_sql("ALTER TABLE interactions ADD COLUMN submission_id VARCHAR(64)")
