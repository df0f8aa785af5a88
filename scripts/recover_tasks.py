#!/usr/bin/env python3
"""Run the startup Reconciler by hand and print what it did.

Useful after a crash when the Huey consumer is not running: clears tasks
whose recording is gone or already finished, and marks recordings that have
a task but were still pending as processing. With --redeliver it also
attaches the Completion Handler and applies outcomes that were recorded but
never handled.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from scribe_pipeline.db import init_db
from scribe_pipeline.pipeline import PipelineService
from scribe_pipeline.reconciler import Reconciler


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile pipeline tasks with recordings")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Database path (default: SCRIBE_DATA_DIR/scribe.db)",
    )
    parser.add_argument(
        "--redeliver",
        action="store_true",
        help="Also handle stored task outcomes (submits follow-up stages)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    engine, SessionFactory = init_db(args.db)
    try:
        service = PipelineService.from_session_factory(SessionFactory)
        if args.redeliver:
            report = service.start()
            service.stop()
        else:
            report = Reconciler(service.store, service.registry).run()
    finally:
        engine.dispose()

    if report is None:
        print("Pipeline service already running; nothing reconciled", file=sys.stderr)
        return 1

    print(json.dumps(report.as_dict(), indent=2))
    return 1 if report.failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
