from __future__ import annotations

from pathlib import Path

from nexusmfg.app import build_repository, settings_from_args
from nexusmfg.settings import Settings, default_db_path


def test_settings_defaults():
    settings = settings_from_args([])
    assert settings.db_path == default_db_path()
    assert settings.port == 8080
    assert settings.seed_demo is True


def test_settings_from_cli_flags(tmp_path):
    settings = settings_from_args(
        ["--db", str(tmp_path / "x.db"), "--port", "9000", "--log-level", "DEBUG", "--no-seed"]
    )
    assert settings.db_path == Path(tmp_path / "x.db")
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"
    assert settings.seed_demo is False


def test_build_repository_seeds_users_and_demo_data(tmp_path):
    repo = build_repository(Settings(db_path=tmp_path / "db" / "app.db"))
    assert {u.username for u in repo.list_users()} == {"admin", "manager", "planner", "operator"}
    assert repo.count_entries() > 0

    # Reopening does not reseed.
    count = repo.count_entries()
    again = build_repository(Settings(db_path=tmp_path / "db" / "app.db"))
    assert again.count_entries() == count


def test_build_repository_without_demo_data(tmp_path):
    repo = build_repository(Settings(db_path=tmp_path / "empty.db", seed_demo=False))
    assert repo.count_entries() == 0
    assert len(repo.list_off_days()) == 2
