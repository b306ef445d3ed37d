"""Tests for the Alembic migrations."""

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from shieldon_core.db.session import build_engine
from shieldon_core.storage import ATTEMPT_NAMESPACE
from shieldon_core.storage.sql import SqlStorage

ROOT = Path(__file__).resolve().parents[1]


def test_upgrade_creates_the_record_table(tmp_path, monkeypatch) -> None:
    """Test that the migrated schema is the one the SQL backend writes to."""
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setenv("ALEMBIC_URL", url)
    config = Config()
    config.set_main_option("script_location", str(ROOT / "migrations"))

    command.upgrade(config, "head")

    engine = build_engine(url)
    assert "shieldon_record" in inspect(engine).get_table_names()
    storage = SqlStorage(engine, create=False)
    storage.save("visitor", {"streak": 1}, ATTEMPT_NAMESPACE)
    assert storage.get("visitor", ATTEMPT_NAMESPACE) == {"streak": 1}
    engine.dispose()
