"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    BLAMER_REPOS_DIRECTORY      — Root directory for bare repository mirrors (default: .storage/repos)
    BLAMER_DATABASE_PATH        — SQLite file for blames, bugs, deploys, occurrences
    BLAME_CACHE_MAX_ENTRIES     — Capacity of the blame cache, in entries (default: 500000)
    GIT_COMMAND_TIMEOUT         — Seconds any single git subprocess may run (default: 30)
    MIRROR_LOCK_TIMEOUT         — Seconds to wait for the per-repository mirror lock (default: 60)
    STALE_FIX_DAYS              — Days after which an undeployed fix is considered abandoned (default: 10)
    MESSAGE_TEMPLATES_PATH      — YAML message template dictionary (default: packaged copy)
    DEPLOY_FIX_COMMIT_PAGE_SIZE — Commits per page when walking a deploy's history (default: 50)
    OCCURRENCE_RETRY_LIMIT      — Retries of an ingestion that hit a locked database (default: 5)
    LOG_LEVEL                   — Root log level for the CLI (default: INFO)

Lock Timeout Philosophy:
    MIRROR_LOCK_TIMEOUT bounds how long a fetch waits for another process
    that is updating the same mirror. Running out of time is a hard failure:
    a wedged mirror needs an operator, so the error is surfaced, never
    treated as "no blame".

Cache Capacity:
    BLAME_CACHE_MAX_ENTRIES bounds storage, not memory. Eviction removes the
    least-recently-accessed entries first.
"""
import os
from dotenv import load_dotenv

load_dotenv()

_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

REPOS_DIRECTORY = os.getenv("BLAMER_REPOS_DIRECTORY", os.path.join(".storage", "repos"))
DATABASE_PATH = os.getenv("BLAMER_DATABASE_PATH", os.path.join(".storage", "blamer.sqlite3"))

# Blame cache
BLAME_CACHE_MAX_ENTRIES = int(os.getenv("BLAME_CACHE_MAX_ENTRIES", 500_000))

# Git subprocess and mirror locking (seconds)
GIT_COMMAND_TIMEOUT = float(os.getenv("GIT_COMMAND_TIMEOUT", 30))
MIRROR_LOCK_TIMEOUT = float(os.getenv("MIRROR_LOCK_TIMEOUT", 60))

# Reopen policy
STALE_FIX_DAYS = int(os.getenv("STALE_FIX_DAYS", 10))

# Message filtering
MESSAGE_TEMPLATES_PATH = os.getenv(
    "MESSAGE_TEMPLATES_PATH",
    os.path.join(_PACKAGE_ROOT, "data", "message_templates.yml"),
)

# Deploy fix marker
DEPLOY_FIX_COMMIT_PAGE_SIZE = int(os.getenv("DEPLOY_FIX_COMMIT_PAGE_SIZE", 50))

# Ingestion retries on a locked database
OCCURRENCE_RETRY_LIMIT = int(os.getenv("OCCURRENCE_RETRY_LIMIT", 5))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
