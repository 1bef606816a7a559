"""
Command line runner for the repository sync engine.
Runs the queue worker, registers repositories and queues jobs.
Can be triggered by system cron or run as a long-lived worker.
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from syncengine.config import config
from syncengine.engine import Engine, build_engine
from syncengine.errors import RepoNotFoundError
from syncengine.models import EmbedConfig, EmbedJobStatus, SyncConfig, SyncJobStatus

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

logger = logging.getLogger(__name__)

WAIT_POLL_SECONDS = 2.0


def load_repos_from_file(path: Path) -> list[dict]:
    """
    Load repository entries from a YAML/JSON file.

    Accepts either a list or a mapping with a ``repos`` key. Entries are
    strings (``owner/name``) or mappings with ``full_name`` and optional
    ``credential_id`` / ``default_branch``.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Repo file not found: {path}")

    content = path.read_text(encoding="utf-8")

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    elif path.suffix == ".json":
        data = json.loads(content)
    else:
        raise ValueError(f"Unsupported repo file format: {path.suffix}")

    if isinstance(data, dict):
        data = data.get("repos", [])
    if not isinstance(data, list):
        raise ValueError("Repo file must contain a list of repositories")

    entries = []
    for item in data:
        if isinstance(item, str):
            entries.append({"full_name": item})
        elif isinstance(item, dict) and item.get("full_name"):
            entries.append(item)
        else:
            raise ValueError(f"Invalid repo entry: {item!r}")
    return entries


def _print(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def _job_dict(job) -> dict:
    data = {
        "id": job.id,
        "repo_id": job.repo_id,
        "status": job.status.value,
        "total_files": job.total_files,
        "processed_files": job.processed_files,
        "failed_files": job.failed_files,
        "error": job.error,
        "created_at": job.created_at,
        "completed_at": job.completed_at,
    }
    if hasattr(job, "skipped_files"):
        data["skipped_files"] = job.skipped_files
    else:
        data["chunks_created"] = job.chunks_created
        data["embeddings_generated"] = job.embeddings_generated
    return data


async def run_worker(engine: Engine, once: bool = False) -> int:
    """Recover interrupted jobs, then drain the queue once or forever."""
    await engine.processor.recover_stuck_jobs()

    if once:
        processed = 0
        while await engine.processor.process_next_job() is not None:
            processed += 1
        logger.info(f"Worker processed {processed} jobs")
        return 0

    sweeper_task = asyncio.create_task(engine.sweeper.run())
    try:
        await engine.processor.run()
    finally:
        engine.stop()
        sweeper_task.cancel()
        await asyncio.gather(sweeper_task, return_exceptions=True)
    return 0


def add_repo(engine: Engine, full_name: str, credential_id: str, branch: Optional[str] = None) -> int:
    if "/" not in full_name:
        logger.error(f"Repository must be given as owner/name: {full_name}")
        return 1
    repo_id = engine.database.add_repo(full_name, credential_id, branch)
    _print({"repo_id": repo_id, "full_name": full_name})
    return 0


def import_repos(engine: Engine, path: Path, credential_id: str) -> int:
    try:
        entries = load_repos_from_file(path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load repos: {e}")
        return 1

    imported = []
    for entry in entries:
        repo_id = engine.database.add_repo(
            entry["full_name"],
            entry.get("credential_id", credential_id),
            entry.get("default_branch"),
        )
        imported.append({"repo_id": repo_id, "full_name": entry["full_name"]})

    logger.info(f"Imported {len(imported)} repositories from {path}")
    _print({"imported": imported})
    return 0


async def run_sync(
    engine: Engine,
    repo_id: int,
    job_config: Optional[SyncConfig] = None,
    immediate: bool = False,
    wait: bool = False,
) -> int:
    """
    Queue a sync job. With ``immediate`` this process works the queue until
    the job finishes; with ``wait`` it polls while another worker runs it.
    """
    try:
        job_id = engine.processor.create_sync_job(repo_id, job_config)
    except RepoNotFoundError as e:
        logger.error(str(e))
        return 1

    if immediate:
        await engine.processor.recover_stuck_jobs()
        while not engine.database.get_sync_job(job_id).status.is_terminal:
            if await engine.processor.process_next_job() is None:
                # Claimed by another worker; fall back to waiting
                await asyncio.sleep(WAIT_POLL_SECONDS)
    elif wait:
        while not engine.database.get_sync_job(job_id).status.is_terminal:
            await asyncio.sleep(WAIT_POLL_SECONDS)

    job = engine.database.get_sync_job(job_id)
    _print(_job_dict(job))
    return 1 if job.status == SyncJobStatus.FAILED else 0


def queue_embed(engine: Engine, repo_id: int, job_config: Optional[EmbedConfig] = None) -> int:
    try:
        job_id = engine.processor.create_embed_job(repo_id, job_config)
    except RepoNotFoundError as e:
        logger.error(str(e))
        return 1
    _print(_job_dict(engine.database.get_embed_job(job_id)))
    return 0


def show_status(engine: Engine, job_id: int, embed: bool = False) -> int:
    job = engine.database.get_embed_job(job_id) if embed else engine.database.get_sync_job(job_id)
    if job is None:
        logger.error(f"{'Embed' if embed else 'Sync'} job not found: {job_id}")
        return 1
    _print(_job_dict(job))
    return 0


def list_jobs(engine: Engine, status: Optional[str], repo_id: Optional[int], limit: int) -> int:
    sync_status = embed_status = None
    if status:
        status = status.upper()
        sync_values = {s.value for s in SyncJobStatus}
        embed_values = {s.value for s in EmbedJobStatus}
        if status not in sync_values | embed_values:
            logger.error(f"Unknown job status: {status}")
            return 1
        sync_status = SyncJobStatus(status) if status in sync_values else None
        embed_status = EmbedJobStatus(status) if status in embed_values else None

    sync_jobs = []
    if not status or sync_status:
        sync_jobs = engine.database.list_sync_jobs(sync_status, repo_id, limit)
    embed_jobs = []
    if not status or embed_status:
        embed_jobs = engine.database.list_embed_jobs(embed_status, repo_id, limit)

    _print({
        "sync_jobs": [_job_dict(j) for j in sync_jobs],
        "embed_jobs": [_job_dict(j) for j in embed_jobs],
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Repository Sync Engine Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python engine_cli.py add-repo octocat/hello-world   # Track a repository
  python engine_cli.py import-repos --file repos.yaml  # Track repositories from a file
  python engine_cli.py sync --repo-id 1                # Queue a sync
  python engine_cli.py sync --repo-id 1 --immediate    # Sync now in this process
  python engine_cli.py worker                          # Run the queue worker
  python engine_cli.py worker --once                   # Drain the queue and exit

Schedule with cron (Linux/Mac):
  0 * * * * cd /path/to/project && python engine_cli.py sweep && python engine_cli.py worker --once
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Worker command
    worker_parser = subparsers.add_parser("worker", help="Run the job queue worker")
    worker_parser.add_argument(
        "--once",
        action="store_true",
        help="Process pending jobs until the queue is empty, then exit"
    )

    # Repo registration
    add_parser = subparsers.add_parser("add-repo", help="Track a repository")
    add_parser.add_argument("full_name", help="Repository as owner/name")
    add_parser.add_argument("--credential-id", default="default", help="Credential to use for API calls")
    add_parser.add_argument("--branch", help="Default branch (resolved from the host when omitted)")

    import_parser = subparsers.add_parser("import-repos", help="Track repositories listed in a file")
    import_parser.add_argument(
        "--file", "-f",
        type=Path,
        required=True,
        help="Path to repo list (YAML or JSON)"
    )
    import_parser.add_argument("--credential-id", default="default", help="Credential for entries without one")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Queue a repository sync")
    sync_parser.add_argument("--repo-id", type=int, required=True)
    sync_parser.add_argument("--max-files", type=int, help="Process at most this many files")
    sync_parser.add_argument("--max-content", type=int, help="Fetch content for at most this many files")
    sync_parser.add_argument("--skip-content", action="store_true", help="Record files without fetching content")
    sync_parser.add_argument("--immediate", action="store_true", help="Run the job in this process")
    sync_parser.add_argument("--wait", action="store_true", help="Wait for a worker to finish the job")

    # Embed command
    embed_parser = subparsers.add_parser("embed", help="Queue chunking and embedding for a repository")
    embed_parser.add_argument("--repo-id", type=int, required=True)
    embed_parser.add_argument("--chunk-size", type=int, help="Chunk size in characters")
    embed_parser.add_argument("--overlap", type=int, help="Chunk overlap in characters")

    # Inspection
    status_parser = subparsers.add_parser("status", help="Show a job")
    status_parser.add_argument("--job-id", type=int, required=True)
    status_parser.add_argument("--embed", action="store_true", help="Look up an embed job instead of a sync job")

    jobs_parser = subparsers.add_parser("jobs", help="List recent jobs")
    jobs_parser.add_argument("--status", help="Filter by status")
    jobs_parser.add_argument("--repo-id", type=int, help="Filter by repository")
    jobs_parser.add_argument("--limit", type=int, default=20)

    # Maintenance
    subparsers.add_parser("sweep", help="Queue a sync for every repository")
    subparsers.add_parser("recover", help="Fail jobs interrupted by a crash")

    return parser


async def _closing(engine: Engine, coro):
    """Run a command coroutine, then close the engine's HTTP clients on the same loop."""
    try:
        return await coro
    finally:
        await engine.close()


def run_command(args: argparse.Namespace, engine: Engine) -> int:
    if args.command == "worker":
        return asyncio.run(_closing(engine, run_worker(engine, once=args.once)))

    elif args.command == "add-repo":
        return add_repo(engine, args.full_name, args.credential_id, args.branch)

    elif args.command == "import-repos":
        return import_repos(engine, args.file, args.credential_id)

    elif args.command == "sync":
        job_config = None
        if args.max_files is not None or args.max_content is not None or args.skip_content:
            job_config = SyncConfig(
                max_files=args.max_files,
                max_content_files=args.max_content,
                skip_content=args.skip_content,
            )
        return asyncio.run(_closing(engine, run_sync(
            engine,
            args.repo_id,
            job_config=job_config,
            immediate=args.immediate,
            wait=args.wait,
        )))

    elif args.command == "embed":
        job_config = None
        if args.chunk_size is not None or args.overlap is not None:
            chunk_size = args.chunk_size or config.CHUNK_SIZE
            overlap = args.overlap if args.overlap is not None else config.CHUNK_OVERLAP
            if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
                logger.error(f"Invalid chunking: size={chunk_size}, overlap={overlap}")
                return 1
            job_config = EmbedConfig(chunk_size=args.chunk_size, overlap=args.overlap)
        return queue_embed(engine, args.repo_id, job_config)

    elif args.command == "status":
        return show_status(engine, args.job_id, embed=args.embed)

    elif args.command == "jobs":
        return list_jobs(engine, args.status, args.repo_id, args.limit)

    elif args.command == "sweep":
        created = engine.sweeper.sweep()
        _print({"created_jobs": created})
        return 0

    elif args.command == "recover":
        recovered = asyncio.run(_closing(engine, engine.processor.recover_stuck_jobs()))
        _print({"recovered": recovered})
        return 0

    return 1


def main(argv: Optional[list[str]] = None, engine: Optional[Engine] = None) -> None:
    """Main entry point for the engine runner."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    engine = engine or build_engine()
    engine.database.initialize()
    try:
        code = run_command(args, engine)
    finally:
        engine.database.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
