"""Lisa operator CLI.

Admin entry points for the Agent Lifecycle Orchestrator and the
Conversation Store.

Environment Variables:
    - DATABASE_URL: PostgreSQL connection string (all commands)
    - OPENAI_API_KEY: Provider API key (agent commands)
    - LISA_*: see lisa.config.Settings

Example Usage:
    $ lisa init-db
    $ lisa health
    $ lisa provision --owner 7 --name "Lisa Assistant - alice"
    $ lisa provision --shared --name "Lisa Shared" --document manual.pdf
    $ lisa bulk-update-instructions --file instructions.txt
    $ lisa add-documents vs_abc123 brakes.pdf doors.md
    $ lisa reconcile --stale-after 600
    $ lisa export --user 7 thread-1 --format txt --output thread-1.txt
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from .agents import AgentLifecycleOrchestrator, DocumentUpload
from .config import Settings
from .conversations import ConversationStore
from .core.context import UserContext
from .core.database import apply_schema, check_database_health, close_pool, create_pool
from .core.exceptions import LisaError

logger = logging.getLogger("lisa.cli")


def _documents(paths: list[str]) -> list[DocumentUpload]:
    # Operator files are never staged copies, so they are not deleted
    return [DocumentUpload(path=Path(p), staged=False) for p in paths or []]


async def cmd_init_db(pool, settings: Settings, args: argparse.Namespace) -> int:
    await apply_schema(pool, Path(args.schema) if args.schema else None)
    print("[Lisa] Schema applied")
    return 0


async def cmd_health(pool, settings: Settings, args: argparse.Namespace) -> int:
    health = await check_database_health(pool)
    if health["healthy"]:
        print(
            f"[Lisa] Database healthy: {health['pool_used']}/{health['pool_size']} "
            "connections in use"
        )
        return 0
    if health.get("missing_tables"):
        print(f"[Lisa] Missing tables: {', '.join(health['missing_tables'])} (run lisa init-db)")
    else:
        print(f"[Lisa] Database unhealthy: {health.get('error')}")
    return 2


async def cmd_provision(pool, settings: Settings, args: argparse.Namespace) -> int:
    orchestrator = AgentLifecycleOrchestrator.from_settings(pool, settings)
    result = await orchestrator.provision_agent(
        None if args.shared else args.owner,
        args.name,
        seed_documents=_documents(args.document),
        corpus_dir=Path(args.corpus_dir) if args.corpus_dir else None,
    )
    state = "already provisioned" if result.already_provisioned else "provisioned"
    print(f"[Lisa] Agent {state}: assistant={result.assistant.id} store={result.store.id}")
    print(f"[Lisa] Documents: {len(result.uploaded)} uploaded, {len(result.failed)} failed")
    for failure in result.failed:
        print(f"  ✗ {failure.filename}: {failure.error}")
    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    return 0


async def cmd_bulk_update(pool, settings: Settings, args: argparse.Namespace) -> int:
    template = (
        Path(args.file).read_text(encoding="utf-8")
        if args.file
        else settings.default_instructions
    )
    orchestrator = AgentLifecycleOrchestrator.from_settings(pool, settings)
    result = await orchestrator.bulk_update_instructions(template)
    print(f"[Lisa] Updated {result.updated}/{result.total} assistants, {result.failed} failed")
    for assistant_id, error in result.failures:
        print(f"  ✗ {assistant_id}: {error}")
    return 0 if result.success else 2


async def cmd_add_documents(pool, settings: Settings, args: argparse.Namespace) -> int:
    orchestrator = AgentLifecycleOrchestrator.from_settings(pool, settings)
    result = await orchestrator.add_documents(args.store_id, _documents(args.paths))
    print(
        f"[Lisa] {len(result.uploaded)} uploaded, {len(result.failed)} failed, "
        f"store now holds {result.file_count} documents"
    )
    for failure in result.failed:
        print(f"  ✗ {failure.filename}: {failure.error}")
    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    return 0 if not result.failed else 2


async def cmd_reconcile(pool, settings: Settings, args: argparse.Namespace) -> int:
    orchestrator = AgentLifecycleOrchestrator.from_settings(pool, settings)
    result = await orchestrator.reconcile(args.stale_after)
    print(
        f"[Lisa] Examined {result.examined}, cleaned {result.cleaned}, "
        f"deleted {len(result.deleted_remote)} remote resources"
    )
    for resource_id, error in result.failures:
        print(f"  ✗ {resource_id}: {error}")
    return 0 if not result.failures else 2


async def cmd_export(pool, settings: Settings, args: argparse.Namespace) -> int:
    store = ConversationStore.from_pool(pool)
    data = await store.export(UserContext(user_id=args.user), args.thread_id, args.format)
    if args.output:
        Path(args.output).write_bytes(data)
        print(f"[Lisa] Exported {args.thread_id} to {args.output}")
    else:
        sys.stdout.write(data.decode("utf-8"))
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "health": cmd_health,
    "provision": cmd_provision,
    "bulk-update-instructions": cmd_bulk_update,
    "add-documents": cmd_add_documents,
    "reconcile": cmd_reconcile,
    "export": cmd_export,
}


async def run(args: argparse.Namespace, settings: Settings) -> int:
    settings.require("database_url")

    start_time = datetime.now(timezone.utc)
    pool = await create_pool(
        settings.database_url,
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
    )
    try:
        return await COMMANDS[args.command](pool, settings, args)
    finally:
        await close_pool(pool)
        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"{args.command} finished in {duration:.1f}s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lisa",
        description="Operate Lisa assistants, knowledge stores and chat history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create tables and indexes")
    init_db.add_argument("--schema", metavar="FILE", help="DDL file (default: the packaged schema.sql)")

    sub.add_parser("health", help="Check connectivity and that the schema is applied")

    provision = sub.add_parser("provision", help="Provision an assistant and knowledge store")
    owner = provision.add_mutually_exclusive_group(required=True)
    owner.add_argument("--owner", type=int, metavar="USER_ID", help="Owning user id")
    owner.add_argument("--shared", action="store_true", help="Create a shared agent")
    provision.add_argument("--name", required=True, help="Display name of the assistant")
    provision.add_argument(
        "--document", action="append", metavar="FILE", help="Seed document (repeatable)"
    )
    provision.add_argument(
        "--corpus-dir", metavar="DIR", help="Default corpus used when no documents are given"
    )

    bulk = sub.add_parser(
        "bulk-update-instructions", help="Push an instruction template to every assistant"
    )
    bulk.add_argument(
        "--file", metavar="FILE", help="Template file (default: configured instructions)"
    )

    add_docs = sub.add_parser("add-documents", help="Upload documents to a knowledge store")
    add_docs.add_argument("store_id")
    add_docs.add_argument("paths", nargs="+", metavar="FILE")

    reconcile = sub.add_parser(
        "reconcile", help="Clean up interrupted provisioning and deletion"
    )
    reconcile.add_argument(
        "--stale-after", type=float, metavar="SECONDS",
        help="Age after which in-flight provisions count as abandoned",
    )

    export = sub.add_parser("export", help="Export a conversation transcript")
    export.add_argument("--user", type=int, required=True, metavar="USER_ID")
    export.add_argument("thread_id")
    export.add_argument("--format", default="json", help="json or text (txt)")
    export.add_argument("--output", metavar="FILE", help="Write to FILE instead of stdout")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except LisaError as e:
        print(f"[Lisa] Configuration error: {e.message}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        return asyncio.run(run(args, settings))
    except LisaError as e:
        logger.error(str(e))
        print(f"[Lisa] Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n[Lisa] Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
