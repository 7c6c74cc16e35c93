#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from arc_backend.db.postgres import PostgresDatastore, PostgresTxRunner


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create the PostgreSQL entities table and its indexes")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument(
        "--table",
        default=os.getenv("ARC_ENTITIES_TABLE", "arc_entities"),
        help="entities table name",
    )
    parser.add_argument("--print-sql", action="store_true", help="print the DDL instead of applying it")
    args = parser.parse_args(argv)

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    datastore = PostgresDatastore(tx_runner=PostgresTxRunner(dsn), table_name=args.table)
    if args.print_sql:
        print(datastore.schema_sql())
        return 0
    datastore.ensure_schema()
    print(json.dumps({"table": args.table, "status": "ready"}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
