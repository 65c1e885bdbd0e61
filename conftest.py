"""Project-level pytest configuration.

Sets safe environment defaults before ``comment_pipeline.config.settings`` is
imported by any test module: tests never reach a real PostgreSQL server and
never start the in-process worker.
"""

import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.dirname(__file__))

# Load test environment variables from .env.test in the project root, if present
dotenv_path = os.path.join(PROJECT_ROOT, ".env.test")
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RUN_PROCESSOR_IN_API", "false")
os.environ.setdefault("ADMIN_API_ENABLED", "true")
