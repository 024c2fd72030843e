from __future__ import annotations

import argparse
import sys
from pathlib import Path

from app.settings import Settings
from store.blobs import BlobStore
from store.db import close_database, open_database
from store.packet import import_packet


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("packet", type=Path)
    parser.add_argument("--db", type=Path, default=None)
    args = parser.parse_args()

    settings = Settings()
    db_path = args.db or settings.db_path

    db = open_database(db_path)
    try:
        ok = import_packet(BlobStore(db), args.packet.read_bytes())
    finally:
        close_database(db)

    if not ok:
        print(f"rejected: {args.packet}", file=sys.stderr)
        sys.exit(1)
    print(db_path)


if __name__ == "__main__":
    main()
