#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
uploads_db.py - poke at the local upload record store (uploads.sqlite3).

Examples (from repo root):
  # point at the DB from mediasync.toml (or ./data/db/uploads.sqlite3)
  ./scripts/uploads_db.py records --limit 20
  ./scripts/uploads_db.py lookup file:///sdcard/DCIM/IMG001.jpg

  # filepaths recorded more than once (should be empty)
  ./scripts/uploads_db.py dupes

  # tables + columns
  ./scripts/uploads_db.py schema --table files

  # ad-hoc SQL (or from file with @path.sql)
  ./scripts/uploads_db.py run --sql "SELECT COUNT(*) FROM files"
"""

import argparse
import sqlite3
from pathlib import Path
from typing import List, Tuple

from mediasync.core.config import load_settings
from mediasync.utils.table import print_table


def default_db_path() -> Path:
    return load_settings().db_path


# ------- db helpers -------

def connect(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        raise SystemExit(f"DB not found: {db_path}")
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def fetch_all(conn: sqlite3.Connection, sql: str, params: Tuple = ()) -> Tuple[List[str], List[Tuple]]:
    cur = conn.execute(sql, params)
    rows = cur.fetchall()
    headers = [d[0] for d in cur.description] if cur.description else []
    return headers, [tuple(r) for r in rows]


# ------- commands -------

def cmd_records(conn, args):
    sql = """
      SELECT id, filename, filepath, upload_date
      FROM files
      ORDER BY id DESC
      LIMIT ?
    """
    headers, rows = fetch_all(conn, sql, (args.limit,))
    print_table(headers, rows)


def cmd_lookup(conn, args):
    sql = "SELECT id, filename, filepath, upload_date FROM files WHERE filepath = ? ORDER BY id DESC"
    headers, rows = fetch_all(conn, sql, (args.filepath,))
    print_table(headers, rows)


def duplicate_filepaths(conn: sqlite3.Connection) -> Tuple[List[str], List[Tuple]]:
    return fetch_all(conn, """
      SELECT filepath, COUNT(*) AS cnt, MIN(id) AS first_id, MAX(id) AS last_id
      FROM files
      GROUP BY filepath
      HAVING cnt > 1
      ORDER BY cnt DESC, filepath
    """)


def cmd_dupes(conn, args):
    headers, rows = duplicate_filepaths(conn)
    print(f"- Filepaths recorded more than once (should be 0): {len(rows)}")
    if rows:
        print_table(headers, rows)


def cmd_run(conn, args):
    sql = args.sql
    if sql.startswith("@"):
        sql = Path(sql[1:]).expanduser().resolve().read_text(encoding="utf-8")
    headers, rows = fetch_all(conn, sql)
    print_table(headers, rows)


def cmd_schema(conn, args):
    th, trs = fetch_all(conn, "SELECT name, type FROM sqlite_master WHERE type IN ('table','index') ORDER BY type,name")
    print_table(th, trs)
    if args.table:
        print()
        ch, crs = fetch_all(conn, f"PRAGMA table_info({args.table})")
        print_table(ch, crs)


# ------- main -------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="mediasync upload DB helper")
    ap.add_argument("--db", default=None, help="Path to uploads.sqlite3 (default: from mediasync.toml)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    spr = sub.add_parser("records", help="Most recent upload records")
    spr.add_argument("--limit", type=int, default=50)
    spr.set_defaults(func=cmd_records)

    spl = sub.add_parser("lookup", help="Records for one filepath (newest first)")
    spl.add_argument("filepath")
    spl.set_defaults(func=cmd_lookup)

    sub.add_parser("dupes", help="Filepaths recorded more than once").set_defaults(func=cmd_dupes)

    sprun = sub.add_parser("run", help="Run ad-hoc SQL or @file.sql")
    sprun.add_argument("--sql", required=True)
    sprun.set_defaults(func=cmd_run)

    sps = sub.add_parser("schema", help="List tables/indexes; PRAGMA table_info for a table")
    sps.add_argument("--table", help="Optional table name to show columns")
    sps.set_defaults(func=cmd_schema)
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    db = Path(args.db).expanduser().resolve() if args.db else default_db_path()
    conn = connect(db)
    try:
        args.func(conn, args)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
