from __future__ import annotations

import argparse
import json
from datetime import UTC, datetime
from pathlib import Path

from app.settings import Settings
from store.blobs import BlobStore
from store.db import close_database, open_database
from store.packet import generate_packet


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", type=Path, default=None)
    parser.add_argument("--out", type=Path, default=None)
    args = parser.parse_args()

    settings = Settings()
    db_path = args.db or settings.db_path
    out_path = args.out or (
        db_path.parent
        / f"triage_data_{datetime.now(tz=UTC).strftime('%Y-%m-%d')}.json"
    )
    out_path.parent.mkdir(parents=True, exist_ok=True)

    db = open_database(db_path)
    try:
        packet = generate_packet(BlobStore(db))
    finally:
        close_database(db)

    out_path.write_text(json.dumps(packet, indent=2, ensure_ascii=False), encoding="utf-8")
    print(out_path)


if __name__ == "__main__":
    main()
