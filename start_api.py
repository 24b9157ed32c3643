#!/usr/bin/env python3
"""
Wait for the database, apply migrations, seed the first operator, then exec uvicorn.
"""
import os
import sys

import wait_for_db  # noqa: F401

from tickethub.core.config import settings
from alembic.config import Config
from alembic import command

alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# Seed with an engine created after migrations ran
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SeedSession = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)
seed_db = SeedSession()
from tickethub.seed import run as run_seed
run_seed(seed_db)
seed_db.close()
seed_engine.dispose()

os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "tickethub.main:app", "--host", "0.0.0.0", "--port", os.getenv("PORT", "8000")],
)
