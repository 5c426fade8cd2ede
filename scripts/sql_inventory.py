#!/usr/bin/env python3
"""
scripts/sql_inventory.py — SQL Server disk and database size inventory.

Hosts come from Active Directory (computers with a MSSQLSvc service principal
name) or from a YAML host inventory given with --hosts. For every host, one
at a time:
  1. log in to SQL Server (master)
  2. read the volumes holding database files (sys.dm_os_volume_stats)
  3. read data and log size per database (sys.master_files)

A host that cannot be reached or queried is reported and the next host is
processed. Rows are printed as tables and, with --output-dir, written to
sql_disks.csv and sql_databases.csv.

Usage:
    python3 scripts/sql_inventory.py
    python3 scripts/sql_inventory.py --hosts inventory/sql.yml --output-dir reports/
"""

from __future__ import annotations

import argparse
import csv
import functools
import pathlib
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, ContextManager, Iterator

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

import pymssql  # noqa: E402
from pydantic import ValidationError  # noqa: E402
from rich.console import Console  # noqa: E402
from rich.markup import escape  # noqa: E402
from rich.table import Table  # noqa: E402

from config.settings import Settings, load_settings  # noqa: E402
from scripts.directory import directory_connection, discover_hosts  # noqa: E402
from scripts.health.errors import RemoteCallError  # noqa: E402
from scripts.host_inventory import parse_inventory  # noqa: E402

GIB = 1024**3
PAGE_BYTES = 8192
LOW_FREE_PCT = 15.0

DISK_QUERY = """
SELECT DISTINCT
    vs.volume_mount_point AS volume,
    vs.logical_volume_name AS label,
    vs.total_bytes,
    vs.available_bytes
FROM sys.master_files AS mf
CROSS APPLY sys.dm_os_volume_stats(mf.database_id, mf.file_id) AS vs
ORDER BY vs.volume_mount_point
"""

# sys.master_files.size is in 8 KB pages
DATABASE_QUERY = """
SELECT
    d.name AS database_name,
    d.state_desc AS state,
    SUM(CASE WHEN mf.type_desc = 'LOG' THEN 0 ELSE CAST(mf.size AS BIGINT) END) AS data_pages,
    SUM(CASE WHEN mf.type_desc = 'LOG' THEN CAST(mf.size AS BIGINT) ELSE 0 END) AS log_pages
FROM sys.databases AS d
JOIN sys.master_files AS mf ON mf.database_id = d.database_id
GROUP BY d.name, d.state_desc
ORDER BY d.name
"""

DISK_FIELDS = ["host", "volume", "label", "total_gb", "free_gb", "free_pct"]
DATABASE_FIELDS = ["host", "database", "state", "data_gb", "log_gb", "total_gb"]


@dataclass
class DiskRow:
    host: str
    volume: str
    label: str
    total_gb: float
    free_gb: float

    @property
    def free_pct(self) -> float:
        return round(100 * self.free_gb / self.total_gb, 1) if self.total_gb else 0.0


@dataclass
class DatabaseRow:
    host: str
    database: str
    state: str
    data_gb: float
    log_gb: float

    @property
    def total_gb(self) -> float:
        return round(self.data_gb + self.log_gb, 2)


@dataclass
class HostReport:
    host: str
    disks: list[DiskRow] = field(default_factory=list)
    databases: list[DatabaseRow] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _gb(num_bytes) -> float:
    return round(int(num_bytes or 0) / GIB, 2)


def disk_row(host: str, row: dict) -> DiskRow:
    return DiskRow(
        host=host,
        volume=row["volume"],
        label=row.get("label") or "",
        total_gb=_gb(row["total_bytes"]),
        free_gb=_gb(row["available_bytes"]),
    )


def database_row(host: str, row: dict) -> DatabaseRow:
    return DatabaseRow(
        host=host,
        database=row["database_name"],
        state=row.get("state") or "",
        data_gb=_gb(int(row["data_pages"] or 0) * PAGE_BYTES),
        log_gb=_gb(int(row["log_pages"] or 0) * PAGE_BYTES),
    )


def sql_error_message(e: Exception) -> str:
    """First line of a pymssql error; its args are usually (code, message bytes)."""
    if len(e.args) == 2 and isinstance(e.args[1], bytes):
        text = e.args[1].decode("utf-8", "replace").strip()
        return text.splitlines()[0] if text else f"error {e.args[0]}"
    return str(e).strip() or type(e).__name__


@contextmanager
def sql_connection(host: str, cfg: Settings) -> Iterator[pymssql.Connection]:
    try:
        conn = pymssql.connect(
            server=host,
            port=str(cfg.SQL_PORT),
            user=cfg.SQL_USER,
            password=cfg.SQL_PASSWORD.get_secret_value() if cfg.SQL_PASSWORD else None,
            database="master",
            login_timeout=cfg.SQL_LOGIN_TIMEOUT_SECONDS,
            timeout=cfg.SQL_QUERY_TIMEOUT_SECONDS,
            appname="sql_inventory",
        )
    except pymssql.Error as e:
        raise RemoteCallError(
            f"SQL Server login failed: {sql_error_message(e)}", {"host": host}
        ) from e
    try:
        yield conn
    finally:
        conn.close()


def _query(conn, sql: str, host: str) -> list[dict]:
    try:
        cursor = conn.cursor(as_dict=True)
        cursor.execute(sql)
        return cursor.fetchall()
    except pymssql.Error as e:
        raise RemoteCallError(f"query failed: {sql_error_message(e)}", {"host": host}) from e


def inventory_host(host: str, connect: Callable[[str], ContextManager]) -> HostReport:
    try:
        with connect(host) as conn:
            disks = [disk_row(host, r) for r in _query(conn, DISK_QUERY, host)]
            databases = [database_row(host, r) for r in _query(conn, DATABASE_QUERY, host)]
    except RemoteCallError as e:
        return HostReport(host, error=e.message)
    return HostReport(host, disks, databases)


def run_inventory(hosts: list[str], connect: Callable[[str], ContextManager]) -> list[HostReport]:
    return [inventory_host(host, connect) for host in hosts]


def write_csv(reports: list[HostReport], output_dir: pathlib.Path) -> list[pathlib.Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    disks_path = output_dir / "sql_disks.csv"
    databases_path = output_dir / "sql_databases.csv"

    with open(disks_path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=DISK_FIELDS)
        w.writeheader()
        for r in (d for report in reports for d in report.disks):
            w.writerow({
                "host": r.host,
                "volume": r.volume,
                "label": r.label,
                "total_gb": r.total_gb,
                "free_gb": r.free_gb,
                "free_pct": r.free_pct,
            })

    with open(databases_path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=DATABASE_FIELDS)
        w.writeheader()
        for r in (d for report in reports for d in report.databases):
            w.writerow({
                "host": r.host,
                "database": r.database,
                "state": r.state,
                "data_gb": r.data_gb,
                "log_gb": r.log_gb,
                "total_gb": r.total_gb,
            })

    return [disks_path, databases_path]


def print_inventory(reports: list[HostReport], console: Console | None = None) -> bool:
    """Print disk and database tables plus failed hosts. Returns True if every host answered."""
    console = console or Console(highlight=False)

    disks = Table(title="Disks")
    for col in ("Host", "Volume", "Label"):
        disks.add_column(col)
    for col in ("Total GB", "Free GB", "Free %"):
        disks.add_column(col, justify="right")
    for report in reports:
        for d in report.disks:
            style = "red" if d.free_pct < LOW_FREE_PCT else None
            disks.add_row(
                escape(d.host),
                escape(d.volume),
                escape(d.label),
                f"{d.total_gb:.2f}",
                f"{d.free_gb:.2f}",
                f"{d.free_pct:.1f}",
                style=style,
            )

    databases = Table(title="Databases")
    for col in ("Host", "Database", "State"):
        databases.add_column(col)
    for col in ("Data GB", "Log GB", "Total GB"):
        databases.add_column(col, justify="right")
    for report in reports:
        for db in report.databases:
            databases.add_row(
                escape(db.host),
                escape(db.database),
                escape(db.state),
                f"{db.data_gb:.2f}",
                f"{db.log_gb:.2f}",
                f"{db.total_gb:.2f}",
            )

    console.print(disks)
    console.print(databases)

    failed = [r for r in reports if not r.ok]
    for r in failed:
        console.print(f"[red]  [FAIL] {escape(r.host)}: {escape(r.error or '')}[/red]")
    console.print(f"\n  Complete: {len(reports) - len(failed)}/{len(reports)} host(s) inventoried")
    return not failed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sql_inventory",
        description="SQL Server disk and database size inventory",
    )
    parser.add_argument(
        "--hosts", help="YAML host inventory (default: discover in Active Directory)"
    )
    parser.add_argument("--output-dir", help="write sql_disks.csv and sql_databases.csv here")
    parser.add_argument("--env-file", default=".env")
    args = parser.parse_args(argv)

    try:
        cfg = load_settings(args.env_file)
        cfg.require_sql_inventory(discover=args.hosts is None)
        if args.hosts:
            hosts = [h.name for h in parse_inventory(args.hosts).hosts]
        else:
            with directory_connection(cfg) as conn:
                hosts = discover_hosts(conn, cfg.LDAP_SEARCH_BASE, cfg.LDAP_COMPUTER_FILTER)
    except (ValidationError, ValueError, FileNotFoundError, RemoteCallError) as e:
        print(f"ERROR: {e}")
        return 2

    if not hosts:
        print("ERROR: no SQL Server hosts found")
        return 2

    reports = run_inventory(hosts, functools.partial(sql_connection, cfg=cfg))
    all_ok = print_inventory(reports)
    if args.output_dir:
        for path in write_csv(reports, pathlib.Path(args.output_dir)):
            print(f"  wrote {path}")
    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
