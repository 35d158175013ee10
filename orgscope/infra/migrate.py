from __future__ import annotations

import argparse
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def build_config(database_url: str | None = None) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "infra" / "migrations"))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def run_upgrade(revision: str = "head", *, sql: bool = False) -> None:
    logger.info("applying authorization schema migrations up to %s", revision)
    command.upgrade(build_config(), revision, sql=sql)


def run_downgrade(revision: str) -> None:
    logger.info("reverting authorization schema migrations down to %s", revision)
    command.downgrade(build_config(), revision)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="orgscope-migrate")
    parser.add_argument("revision", nargs="?", default="head")
    parser.add_argument("--downgrade", action="store_true", help="downgrade to the given revision")
    parser.add_argument("--sql", action="store_true", help="print SQL instead of applying it")
    args = parser.parse_args(argv)
    if args.downgrade:
        run_downgrade(args.revision)
    else:
        run_upgrade(args.revision, sql=args.sql)


if __name__ == "__main__":
    main()
