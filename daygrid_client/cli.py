#!/usr/bin/env python3
"""Command line front end for the DayGrid calendar.

Quick examples:

    daygrid month                      # this month's grid
    daygrid month --anchor 2024-03     # another month
    daygrid add 2024-03-05 "Buy milk"
    daygrid add-many "Standup" --dates 2024-03-04 2024-03-05 2024-03-06
    daygrid day 2024-03-05             # every task of that day, with ids
    daygrid toggle 2024-03-05 <id>
    daygrid delete 2024-03-05 <id>
    daygrid login me@example.com       # emails a sign-in link
    daygrid verify <token>             # completes sign-in, migrates local tasks
    daygrid watch                      # redraw the month on every remote change
    daygrid status                     # profile, session and local task counts
    daygrid config server_url https://daygrid.example.com

Without a sign-in the tasks live in the local profile only.

Exit codes: 0 on success, 1 when the requested change was not applied.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import List, Optional

from daygrid.calendar_grid import VIEWS, WEEK_LABELS, month_label, view_enabled
from daygrid.utils import parse_day_key

from .client import RemoteStoreError, RemoteTaskClient
from .config import Config
from .local_store import LocalStore
from .store import TaskStore
from .view import DayCell, day_panel, month_cells

logger = logging.getLogger(__name__)

CELL_WIDTH = 16


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width - 1] + '…'


def _cell_lines(cell: DayCell) -> List[str]:
    day = f"{cell.date.day:>2}" + ('*' if cell.is_today else ' ')
    if not cell.in_month:
        day = f"({cell.date.day})"
    lines = [day]
    if cell.in_month:
        for t in cell.tasks:
            lines.append(_truncate(('[x] ' if t.done else '[ ] ') + t.text, CELL_WIDTH))
        if cell.limit_reached:
            lines.append(f"{cell.limit_label} reached limit")
    return lines


def render_month(anchor: date, snapshot, today: Optional[date] = None) -> str:
    # week and day views are not implemented yet
    views = '  '.join(v if view_enabled(v) else f"({v})" for v in VIEWS)
    out = [views, month_label(anchor).center((CELL_WIDTH + 1) * 7), ' '.join(w.ljust(CELL_WIDTH) for w in WEEK_LABELS)]
    for row in month_cells(anchor, snapshot, today=today):
        cols = [_cell_lines(c) for c in row]
        height = max(len(c) for c in cols)
        for i in range(height):
            out.append(' '.join((c[i] if i < len(c) else '').ljust(CELL_WIDTH) for c in cols).rstrip())
        out.append('-' * ((CELL_WIDTH + 1) * 7 - 1))
    return '\n'.join(out)


def render_day(snapshot, key: str) -> str:
    panel = day_panel(snapshot, key)
    out = [f"{key}  ({panel.completed}/{panel.total} done)"]
    for t in panel.tasks:
        out.append(f"  {'[x]' if t.done else '[ ]'} {t.text}  id={t.id}")
    if not panel.tasks:
        out.append('  (no tasks)')
    return '\n'.join(out)


def render_status(client: RemoteTaskClient, local: LocalStore) -> str:
    counts = local.counts()
    return '\n'.join([
        f"server:   {client.base_url}",
        f"profile:  {local.db_path}",
        f"session:  {'saved' if client.session_token else 'none'}",
        f"migrated: {'yes' if local.is_migrated() else 'no'}",
        f"local:    {counts['tasks']} task(s) on {counts['days']} day(s)",
    ])


def _anchor_arg(value: str) -> date:
    try:
        return parse_day_key(value if len(value) > 7 else value + '-01')
    except ValueError:
        raise argparse.ArgumentTypeError('expected YYYY-MM or YYYY-MM-DD')


def _day_arg(value: str) -> str:
    try:
        parse_day_key(value)
    except ValueError:
        raise argparse.ArgumentTypeError('expected YYYY-MM-DD')
    return value


def parse_args(argv: List[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog='daygrid', description='Month-grid calendar to-do list')
    p.add_argument('--server-url', default=None, help='Service base URL (default from config / DAYGRID_SERVER_URL)')
    p.add_argument('--profile', default=None, help='Local profile database path (default from config / DAYGRID_LOCAL_DB)')
    p.add_argument('--verbose', action='store_true', help='Debug logging')
    sub = p.add_subparsers(dest='command', required=True)

    m = sub.add_parser('month', help='Show a month grid')
    m.add_argument('--anchor', type=_anchor_arg, default=None, help='YYYY-MM (default: this month)')

    d = sub.add_parser('day', help='List every task of a day')
    d.add_argument('key', type=_day_arg)

    a = sub.add_parser('add', help='Add a task to a day')
    a.add_argument('key', type=_day_arg)
    a.add_argument('text')

    am = sub.add_parser('add-many', help='Add one task to several days')
    am.add_argument('text')
    am.add_argument('--dates', nargs='+', type=_day_arg, required=True)

    for name, helptext in (('toggle', 'Flip a task between done and open'), ('delete', 'Delete a task')):
        s = sub.add_parser(name, help=helptext)
        s.add_argument('key', type=_day_arg)
        s.add_argument('task_id')

    li = sub.add_parser('login', help='Email a sign-in link')
    li.add_argument('email')

    v = sub.add_parser('verify', help='Complete sign-in with the token from the link')
    v.add_argument('token')

    sub.add_parser('logout', help='Sign out')
    w = sub.add_parser('watch', help='Redraw the month on every remote change')
    w.add_argument('--anchor', type=_anchor_arg, default=None)

    sub.add_parser('status', help='Show the profile, session and local task counts')
    c = sub.add_parser('config', help='Save a client setting')
    c.add_argument('name', choices=('server_url', 'db_path'))
    c.add_argument('value')
    return p.parse_args(argv)


def _print_notice(message: str) -> None:
    print(f"! {message}", file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    config = Config()
    if args.command == 'config':
        setattr(config, args.name, args.value)
        print(f"Saved {args.name} to {config.config_file}.")
        return 0
    local = LocalStore(args.profile or config.db_path)
    client = RemoteTaskClient(base_url=args.server_url or config.server_url, local_store=local)
    anchor = getattr(args, 'anchor', None)
    if anchor is None and getattr(args, 'key', None):
        anchor = parse_day_key(args.key)
    elif anchor is None and getattr(args, 'dates', None):
        anchor = parse_day_key(args.dates[0])
    store = TaskStore(client, local, notify=_print_notice, anchor=anchor, realtime=(args.command == 'watch'))
    try:
        if args.command == 'login':
            out = await client.sign_in_with_email(args.email)
            print(f"Sign-in link sent to {args.email}.")
            if out.get('token'):
                print(f"(dev mode) token: {out['token']}")
            return 0
        if args.command == 'status':
            print(render_status(client, local))
            return 0
        await store.initialize()
        ok = True
        if args.command == 'verify':
            user = await client.verify_magic_link(args.token)
            print(f"Signed in as {user.email}.")
        elif args.command == 'logout':
            await store.sign_out()
            print('Signed out.')
        elif args.command == 'add':
            ok = await store.add_task(args.key, args.text)
        elif args.command == 'add-many':
            ok = await store.add_task_to_dates(args.dates, args.text)
        elif args.command == 'toggle':
            ok = await store.toggle_task(args.key, args.task_id)
        elif args.command == 'delete':
            ok = await store.delete_task(args.key, args.task_id)

        if args.command in ('add', 'toggle', 'delete', 'day'):
            print(render_day(store.snapshot, args.key))
        elif args.command in ('month', 'add-many', 'verify'):
            print(render_month(store.anchor, store.snapshot))
        elif args.command == 'watch':
            await _watch(store)
        return 0 if ok else 1
    except RemoteStoreError as e:
        _print_notice(str(e))
        return 1
    finally:
        await store.close()
        await client.aclose()


async def _watch(store: TaskStore) -> None:
    if store.auth_user is None:
        _print_notice('watch needs a signed-in session; showing local tasks once.')
        print(render_month(store.anchor, store.snapshot))
        return
    store.add_snapshot_listener(lambda snapshot: print(render_month(store.anchor, snapshot), flush=True))
    print(render_month(store.anchor, store.snapshot), flush=True)
    while True:
        await asyncio.sleep(3600)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s:%(name)s: %(message)s',
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == '__main__':
    raise SystemExit(main())
