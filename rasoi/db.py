from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from rasoi.config import settings

class Base(DeclarativeBase):
    pass

# sqlite needs cross-thread access for the threadpool FastAPI runs sync routes in
connect_args = {"check_same_thread": False, "timeout": 15} if settings.DB_URL.startswith("sqlite") else {}
engine = create_engine(settings.DB_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
