"""Run one ingestion pass from the command line: ``python -m story_ingest``."""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from story_ingest.settings import get_settings
from story_ingest.tasks.cache import sweep_core
from story_ingest.tasks.ingest import ingest_core
from story_ingest.utils.logging import configure_logging


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="story_ingest", description="Story ingestion runner")
    parser.add_argument(
        "command",
        nargs="?",
        default="ingest",
        choices=("ingest", "sweep-cache"),
        help="ingest: 수집 1회 실행, sweep-cache: 만료 캐시 정리",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.structlog_level, json_enabled=settings.log_json)
    if args.command == "sweep-cache":
        summary = sweep_core(settings)
        print(json.dumps(summary, ensure_ascii=False, indent=2))
        return 0

    summary = ingest_core(settings)
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if summary.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
