"""Remote agent diagnostics CLI for worktrees and stored sessions."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict

from remote_agent.config import RemoteAgentSettings
from remote_agent.errors import DirtyWorkspaceError, ToolInvocationError
from remote_agent.storage import ChromaStore, ChromaUnavailableError
from remote_agent.workspace import WorktreeManager


def load_store(settings: RemoteAgentSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def build_manager(settings: RemoteAgentSettings) -> WorktreeManager:
    return WorktreeManager(settings)


def cmd_worktrees(args: argparse.Namespace) -> None:
    manager = build_manager(RemoteAgentSettings())
    if args.orphaned:
        entries = asyncio.run(manager.find_orphaned_worktrees(args.repo))
    else:
        entries = asyncio.run(manager.list_worktrees(args.repo))

    if args.json:
        print(json.dumps([asdict(entry) for entry in entries], indent=2))
    else:
        for entry in entries:
            print(f"{entry.path} [{entry.branch or 'detached'}]")


def cmd_prune(args: argparse.Namespace) -> None:
    manager = build_manager(RemoteAgentSettings())
    try:
        asyncio.run(manager.prune_worktrees(args.repo))
    except ToolInvocationError as exc:
        print(f"Prune failed: {exc}")
        raise SystemExit(1)
    print(f"Pruned stale worktree metadata in {args.repo}")


def cmd_remove(args: argparse.Namespace) -> None:
    manager = build_manager(RemoteAgentSettings())
    try:
        asyncio.run(manager.remove_worktree(args.repo, args.path))
    except DirtyWorkspaceError as exc:
        print(f"Worktree has uncommitted changes, not removed: {exc}")
        raise SystemExit(1)
    except ToolInvocationError as exc:
        print(f"Remove failed: {exc}")
        raise SystemExit(1)
    print(f"Removed {args.path}")


def cmd_sessions(args: argparse.Namespace) -> None:
    store = load_store(RemoteAgentSettings())
    sessions = asyncio.run(store.list_sessions(args.conversation_id))
    if args.active:
        sessions = [session for session in sessions if session.active]
    print(json.dumps([session.model_dump(mode="json") for session in sessions], indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Remote agent diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_worktrees = sub.add_parser("worktrees", help="List worktrees of a repository")
    p_worktrees.add_argument("repo")
    p_worktrees.add_argument("--orphaned", action="store_true", help="Only worktrees missing on disk")
    p_worktrees.add_argument("--json", action="store_true", help="Output JSON")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_prune = sub.add_parser("prune", help="Prune metadata of deleted worktrees")
    p_prune.add_argument("repo")
    p_prune.set_defaults(func=cmd_prune)

    p_remove = sub.add_parser("remove", help="Remove a clean worktree")
    p_remove.add_argument("repo")
    p_remove.add_argument("path")
    p_remove.set_defaults(func=cmd_remove)

    p_sessions = sub.add_parser("sessions", help="List stored sessions of a conversation")
    p_sessions.add_argument("conversation_id")
    p_sessions.add_argument("--active", action="store_true", help="Only the active session")
    p_sessions.set_defaults(func=cmd_sessions)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
