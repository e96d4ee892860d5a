from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlmodel import SQLModel

from challenge_node.db.repositories import DBTierRepository
from challenge_node.db.session import create_session, engine
from challenge_node.db.tables import *  # noqa: F401,F403
from challenge_node.entities.rewards import Tier

logger = logging.getLogger(__name__)


def tables_to_reset() -> list[str]:
    # children first
    return [
        "winners",
        "rewards",
        "tiers",
        "stars",
        "performances",
        "participants",
        "criteria",
        "challenges",
        "users",
        "alembic_version",
    ]


def default_tiers() -> list[dict[str, Any]]:
    return [
        {"id": "TIER_001", "name": "Débutant", "min_stars": 0, "description": "Premiers pas"},
        {"id": "TIER_002", "name": "Bronze", "min_stars": 10, "description": "10 étoiles cumulées"},
        {"id": "TIER_003", "name": "Argent", "min_stars": 25, "description": "25 étoiles cumulées"},
        {"id": "TIER_004", "name": "Or", "min_stars": 50, "description": "50 étoiles cumulées"},
    ]


def load_tiers() -> list[dict[str, Any]]:
    path = os.getenv("TIERS_PATH")
    if not path:
        return default_tiers()

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("TIERS_PATH must point to a JSON array")
    return payload


def _find_alembic_dir() -> Path | None:
    """Locate the Alembic migrations directory.

    ``ALEMBIC_DIR`` wins; otherwise the repo-root ``alembic/`` next to the
    package is used. Returns ``None`` when neither exists (pip-installed
    package without migrations), in which case callers fall back to
    ``SQLModel.metadata.create_all()``.
    """
    def _is_valid(p: Path) -> bool:
        return p.is_dir() and (p / "env.py").exists() and (p / "versions").is_dir()

    env_dir = os.getenv("ALEMBIC_DIR")
    if env_dir and _is_valid(Path(env_dir)):
        return Path(env_dir)

    repo_dir = Path(__file__).resolve().parent.parent.parent / "alembic"
    if _is_valid(repo_dir):
        return repo_dir

    return None


def _run_alembic_upgrade(alembic_dir: Path) -> None:
    from alembic.config import Config
    from alembic import command

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(alembic_dir))
    url = engine.url.render_as_string(hide_password=False)
    # alembic Config runs values through configparser interpolation
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    command.upgrade(alembic_cfg, "head")


def migrate() -> None:
    """Run Alembic migrations and upsert tiers. Never drops data."""
    alembic_dir = _find_alembic_dir()
    if alembic_dir is not None:
        logger.info("Running Alembic migrations from %s", alembic_dir)
        try:
            _run_alembic_upgrade(alembic_dir)
        except Exception as exc:
            logger.warning("Alembic migration failed (%s), falling back to create_all", exc)
            SQLModel.metadata.create_all(engine)
    else:
        logger.info("No Alembic migrations directory found, using SQLModel create_all")
        SQLModel.metadata.create_all(engine)

    logger.info("Upserting tiers")
    with create_session() as session:
        repository = DBTierRepository(session)
        for config in load_tiers():
            repository.save(Tier(
                id=str(config["id"]),
                name=str(config["name"]),
                min_stars=int(config["min_stars"]),
                description=str(config.get("description", "")),
            ))

    logger.info("Database migration complete")


def reset_db() -> None:
    """Drop all tables and recreate from scratch. Destroys all data."""
    logger.warning("Dropping all tables")
    with engine.begin() as conn:
        for table in tables_to_reset():
            conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))

    migrate()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )

    if "--reset" in args:
        reset_db()
    else:
        migrate()
    return 0


if __name__ == "__main__":
    sys.exit(main())
