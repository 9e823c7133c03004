import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backends import MemoryBackend, SQLBackend
from database import Base


def make_sql_backend() -> SQLBackend:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return SQLBackend(engine)


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    if request.param == "memory":
        return MemoryBackend()
    return make_sql_backend()
