"""Command-line entry point for flok."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from auth.accounts import clear_default_account, read_default_account, write_default_account

from .constants import DEFAULT_ACCOUNT
from .context import FlokContext
from .env import FlokConfig, load_config, load_env, setup_logging
from .errors import FlokError
from .query import GraphQuery


def _parse_query(pairs: list[str]) -> dict[str, str]:
    query: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Query parameters must look like key=value, got {pair!r}")
        query[key] = value
    return query


def _show_challenge(challenge) -> None:
    print(challenge.message)
    print()
    print("Waiting for authentication...")


async def _auth_login(context: FlokContext, args: argparse.Namespace) -> int:
    account_id = args.account or context.config.account or DEFAULT_ACCOUNT
    await context.token_manager.login(_show_challenge, account_id)
    if read_default_account(context.config.default_account_path) is None:
        write_default_account(context.config.default_account_path, account_id)
    print(f"Authenticated as {account_id}.")
    return 0


async def _auth_logout(context: FlokContext, args: argparse.Namespace) -> int:
    account_id = await context.resolve_account(args.account)
    await context.token_manager.logout(account_id)
    clear_default_account(context.config.default_account_path, account_id)
    print(f"Logged out {account_id}. Stored tokens removed.")
    return 0


async def _auth_status(context: FlokContext, args: argparse.Namespace) -> int:
    account_id = await context.resolve_account(args.account)
    if await context.token_manager.is_authenticated(account_id):
        print(f"Authenticated ({account_id}).")
        return 0
    print(f"Not authenticated ({account_id}). Run `flok auth login`.")
    return 1


async def _accounts_list(context: FlokContext, args: argparse.Namespace) -> int:
    del args
    current = read_default_account(context.config.default_account_path)
    for account_id in sorted(await context.store.list_account_ids()):
        marker = "*" if account_id == current else " "
        print(f"{marker} {account_id}")
    return 0


async def _accounts_switch(context: FlokContext, args: argparse.Namespace) -> int:
    known = await context.store.list_account_ids()
    if args.account_id not in known:
        print(f"Unknown account {args.account_id!r}.", file=sys.stderr)
        return 1
    write_default_account(context.config.default_account_path, args.account_id)
    print(f"Switched to {args.account_id}.")
    return 0


def _build_query(args: argparse.Namespace) -> dict[str, str]:
    query = GraphQuery(_parse_query(args.query))
    if args.select:
        query = query.select(*args.select)
    if args.filter:
        query = query.filter(args.filter)
    for clause in args.order_by:
        field, _, direction = clause.partition(" ")
        query = query.order_by(field, descending=direction.strip().lower() == "desc")
    if args.top is not None:
        query = query.top(args.top)
    return query.build()


async def _graph(context: FlokContext, args: argparse.Namespace) -> int:
    account_id = await context.resolve_account(args.account)
    client = context.graph_client(account_id)
    query = _build_query(args)

    if args.all:
        items = [
            item
            async for item in client.paginate(args.path, query or None, max_pages=args.max_pages)
        ]
        print(json.dumps(items, indent=2))
        return 0

    data = await client.raw(args.method, args.path, query=query or None, body=args.body)
    print(data.decode("utf-8", errors="replace"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flok",
        description="Microsoft Graph from the command line and from agents",
    )
    parser.add_argument("--client-id", help="Application (client) id (default: FLOK_CLIENT_ID)")
    parser.add_argument("--tenant", help="Tenant id (default: FLOK_TENANT_ID or 'common')")
    parser.add_argument("--account", help="Account to act as (default: resolved)")
    parser.add_argument("--read-only", action="store_true", help="Refuse write requests")
    parser.add_argument("--api-version", help="Graph API version (default: v1.0)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # auth
    auth_parser = subparsers.add_parser("auth", help="Manage sign-in")
    auth_sub = auth_parser.add_subparsers(dest="auth_command", required=True)
    auth_sub.add_parser("login", help="Sign in with a device code").set_defaults(handler=_auth_login)
    auth_sub.add_parser("logout", help="Remove stored tokens").set_defaults(handler=_auth_logout)
    auth_sub.add_parser("status", help="Show whether credentials are usable").set_defaults(
        handler=_auth_status
    )

    # accounts
    accounts_parser = subparsers.add_parser("accounts", help="Manage stored accounts")
    accounts_sub = accounts_parser.add_subparsers(dest="accounts_command", required=True)
    accounts_sub.add_parser("list", help="List stored accounts").set_defaults(
        handler=_accounts_list
    )
    switch_parser = accounts_sub.add_parser("switch", help="Set the default account")
    switch_parser.add_argument("account_id")
    switch_parser.set_defaults(handler=_accounts_switch)

    # graph
    graph_parser = subparsers.add_parser("graph", help="Call any Graph endpoint")
    graph_parser.add_argument("method", type=str.upper, help="HTTP method")
    graph_parser.add_argument("path", help="Path such as /me/messages, or an absolute nextLink")
    graph_parser.add_argument(
        "--query", "-q", action="append", default=[], help="Query parameter key=value"
    )
    graph_parser.add_argument(
        "--select", action="append", default=[], help="Field to return ($select); repeatable"
    )
    graph_parser.add_argument("--filter", help="OData filter expression ($filter)")
    graph_parser.add_argument(
        "--order-by",
        action="append",
        default=[],
        help="Sort clause such as 'receivedDateTime desc' ($orderby); repeatable",
    )
    graph_parser.add_argument("--top", type=int, help="Page size ($top)")
    graph_parser.add_argument("--body", help="JSON request body")
    graph_parser.add_argument(
        "--all", action="store_true", help="Follow @odata.nextLink and print every item"
    )
    graph_parser.add_argument(
        "--max-pages", type=int, default=10, help="Page limit with --all (default: 10)"
    )
    graph_parser.set_defaults(handler=_graph)

    subparsers.add_parser("serve", help="Run the MCP server")
    return parser


def _config_from_args(args: argparse.Namespace) -> FlokConfig:
    return load_config(
        client_id=args.client_id,
        tenant_id=args.tenant,
        account=args.account,
        read_only=args.read_only,
        api_version=args.api_version,
    )


async def _run(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    async with FlokContext(config) as context:
        return await args.handler(context, args)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_env()
    setup_logging()

    if args.command == "serve":
        from server import main as serve

        serve(_config_from_args(args))
        return 0

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130
    except (FlokError, ValueError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
