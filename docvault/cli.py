"""
docvault CLI — Bootstrap and operator commands.

Commands:
- docvault init    — Create tables and the first admin identity
- docvault stats   — Audit statistics per action for a date range
- docvault tree    — Print the category tree
"""

from __future__ import annotations

import argparse
import getpass
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

logger = logging.getLogger("docvault.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="docvault",
        description="docvault — document management with approval and audit",
    )
    parser.add_argument(
        "--config", default=None, help="Path to docvault.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # docvault init
    init_parser = subparsers.add_parser("init", help="Create tables and the admin identity")
    init_parser.add_argument("--admin-email", help="Admin email (default: from config)")
    init_parser.add_argument(
        "--admin-password", help="Admin password (prompted if not provided)"
    )
    init_parser.add_argument("--admin-name", default="Administrator", help="Admin display name")

    # docvault stats
    stats_parser = subparsers.add_parser("stats", help="Audit statistics per action")
    stats_parser.add_argument("--days", type=int, default=7, help="Look back this many days (default: 7)")
    stats_parser.add_argument("--start", help="ISO start date (overrides --days)")
    stats_parser.add_argument("--end", help="ISO end date (default: now)")

    # docvault tree
    tree_parser = subparsers.add_parser("tree", help="Print the category tree")
    tree_parser.add_argument(
        "--all", action="store_true", dest="include_inactive", help="Include inactive categories"
    )

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "stats":
        return cmd_stats(args)
    elif args.command == "tree":
        return cmd_tree(args)
    else:
        parser.print_help()
        return 0


def _build_vault(config_path: Optional[str]):
    """A DocVault for one-shot commands: synchronous audit, no Redis."""
    from docvault.app import DocVault
    from docvault.engine.config import load_config

    config = load_config(config_path)
    config.audit.async_writes = False
    config.redis.enabled = False
    return DocVault(config)


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap:
    1. Load config
    2. Create all tables
    3. Create the admin identity (skipped if the email already exists)
    """
    print("=" * 60)
    print("  docvault Initialization")
    print("=" * 60)

    try:
        vault = _build_vault(args.config)
    except Exception as e:
        print(f"[ERROR] Failed to start: {e}")
        return 1

    try:
        vault.db.create_all()
        print("[OK] Database tables created")

        email = args.admin_email or vault.config.admin_email
        password = args.admin_password
        if not password:
            while True:
                password = getpass.getpass("  Enter admin password: ")
                confirm = getpass.getpass("  Confirm password: ")
                if password == confirm:
                    break
                print("  Passwords do not match. Try again.")

        min_length = vault.config.security.password_min_length
        if len(password) < min_length:
            print(f"[ERROR] Password must be at least {min_length} characters")
            return 1

        result = vault.ensure_admin(email, password, name=args.admin_name)
        if result["created"]:
            print(f"[OK] Created admin identity: {result['user']['email']}")
        else:
            print(f"[INFO] Admin identity already exists: {result['user']['email']}")
        return 0
    except Exception as e:
        print(f"[ERROR] Initialization failed: {e}")
        return 1
    finally:
        vault.shutdown()


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_stats(args: argparse.Namespace) -> int:
    """Print per-action totals, outcomes and average duration."""
    try:
        end = _parse_date(args.end) or datetime.now(timezone.utc)
        start = _parse_date(args.start) or end - timedelta(days=args.days)
    except ValueError as e:
        print(f"[ERROR] Invalid date: {e}")
        return 1

    vault = _build_vault(args.config)
    try:
        with vault.db.session_scope() as session:
            rows = vault.audit.get_system_stats(session, start=start, end=end)
    finally:
        vault.shutdown()

    print(f"Audit statistics {start:%Y-%m-%d %H:%M} → {end:%Y-%m-%d %H:%M}")
    if not rows:
        print("  (no entries)")
        return 0

    print(f"  {'action':<22}{'total':>7}{'ok':>7}{'fail':>7}{'warn':>7}{'avg ms':>10}")
    for row in rows:
        avg = f"{row['avg_duration_ms']:.1f}" if row["avg_duration_ms"] is not None else "-"
        print(
            f"  {row['action']:<22}{row['total']:>7}{row['success']:>7}"
            f"{row['failure']:>7}{row['warning']:>7}{avg:>10}"
        )
    return 0


def _render_tree(nodes: List[dict], depth: int = 0) -> List[str]:
    lines: List[str] = []
    for node in nodes:
        marker = "" if node.get("is_active", True) else " (inactive)"
        lines.append(
            f"{'  ' * depth}- {node['name']} [{node['slug']}] "
            f"docs={node['document_count']}{marker}"
        )
        lines.extend(_render_tree(node.get("children", []), depth + 1))
    return lines


def cmd_tree(args: argparse.Namespace) -> int:
    vault = _build_vault(args.config)
    try:
        with vault.db.session_scope() as session:
            tree = vault.services.categories.build_tree(
                session, include_inactive=args.include_inactive
            )
    finally:
        vault.shutdown()

    if not tree:
        print("(no categories)")
        return 0
    for line in _render_tree(tree):
        print(line)
    return 0
