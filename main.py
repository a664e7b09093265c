"""
Blamer command line
===================
Composition root: builds the process-wide instances (stores, blame cache,
message templates, repository mirrors) and exposes them through a CLI.

Commands:
    python main.py ingest --project project.json --environment production payload.json [...]
        Ingest occurrence payloads and print the bug each one was grouped into.
    python main.py fetch --project project.json
        Clone or update the project's repository mirror.

project.json holds the Project fields plus an "environments" mapping of
environment name to id, e.g.
    {"id": 1, "name": "app", "repository_url": "git@github.com:org/app.git",
     "filter_paths": ["vendor/"], "environments": {"production": 1}}
"""
import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from blamer.agents.occurrences_worker import OccurrencesWorker
from blamer.core import config
from blamer.core.errors import BlamerError
from blamer.models.project import Environment, Project
from blamer.parser.message_filter import MessageFilter
from blamer.parser.message_templates import MessageTemplateMatcher
from blamer.services.blame_cache import BlameCache
from blamer.services.blame_store import BlameStore
from blamer.services.bug_store import BugStore
from blamer.services.git_repository import RepositoryFactory
from blamer.utils.logging_config import setup_logging

logger = logging.getLogger("main")


class Application:
    """Process-lifetime instances, built once and passed to every worker."""

    def __init__(self, database_path: str, repos_dir: str, templates_path: str,
                 max_blame_entries: int = config.BLAME_CACHE_MAX_ENTRIES) -> None:
        self.bug_store = BugStore(database_path)
        self.blame_cache = BlameCache(BlameStore(database_path), max_entries=max_blame_entries)
        self.message_filter = MessageFilter(MessageTemplateMatcher.from_yaml(templates_path))
        self.repositories = RepositoryFactory(repos_dir)
        self.executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="deploy-fix-marker")

    def worker(self, project: Project, environment: Environment) -> OccurrencesWorker:
        return OccurrencesWorker(
            project,
            environment,
            store=self.bug_store,
            repositories=self.repositories,
            blame_cache=self.blame_cache,
            message_filter=self.message_filter,
            executor=self.executor,
        )

    def close(self) -> None:
        self.executor.shutdown(wait=True)


def load_project(path: str, environment_name: Optional[str] = None) -> Tuple[Project, Optional[Environment]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    environments = data.pop("environments", None) or {}
    project = Project(**data)
    if environment_name is None:
        return project, None
    if environments and environment_name not in environments:
        raise BlamerError(f"Project {project.name} has no environment {environment_name!r}")
    environment_id = environments.get(environment_name, 1)
    return project, Environment(id=environment_id, name=environment_name, project=project)


def load_payloads(paths: List[str]) -> List[dict]:
    payloads = []
    for path in paths:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        payloads.extend(data if isinstance(data, list) else [data])
    return payloads


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def cmd_ingest(app: Application, args: argparse.Namespace) -> int:
    project, environment = load_project(args.project, args.environment)
    worker = app.worker(project, environment)
    failures = 0
    for payload in load_payloads(args.payloads):
        try:
            occurrence = worker.perform(payload)
        except BlamerError as e:
            failures += 1
            logger.error("Occurrence rejected: %s", e)
            continue
        bug = app.bug_store.get_bug(occurrence.bug_id)
        print(f"occurrence {occurrence.id} -> bug #{bug.number} {bug.class_name} at {bug.file}:{bug.line}"
              f" [{bug.status}]")
    return 1 if failures else 0


def cmd_fetch(app: Application, args: argparse.Namespace) -> int:
    project, _ = load_project(args.project)
    repository = app.repositories.for_project(project)
    repository.fetch()
    print(f"{project.repository_url} -> {repository.path}")
    return 0


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Group exception occurrences into bugs using git blame",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database", default=config.DATABASE_PATH, help="SQLite database file")
    parser.add_argument("--repos-dir", default=config.REPOS_DIRECTORY, help="Directory for repository mirrors")
    parser.add_argument("--templates", default=config.MESSAGE_TEMPLATES_PATH, help="Message template YAML")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files ('' to disable)")

    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Ingest occurrence payloads")
    ingest.add_argument("--project", required=True, help="Project JSON file")
    ingest.add_argument("--environment", required=True, help="Environment name")
    ingest.add_argument("payloads", nargs="+", help="Occurrence payload JSON files")
    ingest.set_defaults(handler=cmd_ingest)

    fetch = commands.add_parser("fetch", help="Clone or update a project's mirror")
    fetch.add_argument("--project", required=True, help="Project JSON file")
    fetch.set_defaults(handler=cmd_fetch)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    setup_logging(level=args.log_level, log_dir=args.log_dir)

    app = Application(args.database, args.repos_dir, args.templates)
    try:
        return args.handler(app, args)
    except BlamerError as e:
        logger.error("%s", e)
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
