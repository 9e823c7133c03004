import io
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from backends import SQLBackend
from database import Base
from services import CategoryService

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(url: str, **kwargs) -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"), **kwargs)
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)
    return cfg


def test_upgrade_creates_the_model_tables(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        for name, table in Base.metadata.tables.items():
            migrated = {c["name"] for c in inspector.get_columns(name)}
            assert migrated == set(table.columns.keys())

        categories = {c["name"]: c for c in inspector.get_columns("categories")}
        assert categories["name_key"]["type"].length == 200
        assert getattr(categories["emoji"]["type"], "length", None) is None
    finally:
        engine.dispose()


def test_migrated_database_serves_the_sql_backend(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url)
    try:
        service = CategoryService(SQLBackend(engine), "owner")
        created = service.create("Garden", "\U0001F33B" * 2)
        assert created.emoji == "\U0001F33B" * 2
        assert [c.name for c in service.list_all()][-1] == "Garden"
    finally:
        engine.dispose()


def test_downgrade_removes_the_tables(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    cfg = _alembic_config(url)
    command.upgrade(cfg, "head")

    command.downgrade(cfg, "base")

    engine = create_engine(url)
    try:
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()


def test_offline_mode_renders_sql() -> None:
    buffer = io.StringIO()
    cfg = _alembic_config("sqlite:///offline.db", output_buffer=buffer)

    command.upgrade(cfg, "head", sql=True)

    rendered = buffer.getvalue()
    assert "CREATE TABLE categories" in rendered
    assert "uq_category_owner_name" in rendered
