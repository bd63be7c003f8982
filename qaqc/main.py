import argparse
import sys
from typing import List, Optional

import structlog

from qaqc.config import get_settings
from qaqc.logging_config import setup_logging
from qaqc.services.anomalies import SchemaError, Sensitivity
from qaqc.services.reviewer import ConsoleReviewer
from qaqc.services.storage import DatasetDiscoveryError, StorageService
from qaqc.tasks.process_datasets import process_year

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qaqc",
        description="Interactive QAQC of field-survey datasheets for one collection year",
    )
    parser.add_argument("--year", help="Year the data was collected (prompted when omitted)")
    parser.add_argument("--root", help="Data root containing Raw_CSVs/, Processed_Data/ and QAQC_Notes/")
    parser.add_argument(
        "--sensitivity",
        choices=["e", "m", Sensitivity.EXTREME_ONLY.value, Sensitivity.MILD_AND_EXTREME.value],
        help="Outlier flagging: e = extreme only, m = mild and extreme (asked per datasheet when omitted)",
    )
    parser.add_argument("--log-level", help="Operational log level (default from QAQC_LOG_LEVEL)")
    parser.add_argument("--log-format", choices=["console", "json"], help="Operational log format")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_settings()
    setup_logging(args.log_level or config.LOG_LEVEL, args.log_format or config.LOG_FORMAT)

    reviewer = ConsoleReviewer()
    year = args.year or reviewer.ask_data_year()
    storage = StorageService(config, root=args.root)
    logger.info("QAQC started", year=year, root=str(storage.root))

    try:
        report = process_year(
            year,
            reviewer,
            storage=storage,
            sensitivity=Sensitivity.parse(args.sensitivity) if args.sensitivity else None,
            config=config,
        )
    except (DatasetDiscoveryError, SchemaError) as e:
        logger.error("QAQC stopped", year=year, error=str(e))
        return 1

    reviewer.say("=========================================")
    reviewer.say("All files have been processed.")
    reviewer.say(f"Processed datasheets: {storage.processed_dir(year)}")
    reviewer.say(f"QAQC logs: {storage.notes_dir(year)}")
    reviewer.say("Check the site coordinates in GIS before combining the datasheets.")
    logger.info(
        "QAQC finished",
        year=year,
        passes=len(report.passes),
        log_entries=report.total_log_entries,
        skipped=report.datasets_skipped,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
