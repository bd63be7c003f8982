from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import pandas as pd
import structlog

from qaqc.config import Settings, settings as default_settings
from qaqc.logging_config import log_pass_event
from qaqc.schemas.summary import PassSummary, YearReport
from qaqc.services.anomalies import Sensitivity
from qaqc.services.cover_rules import COVER_COLUMNS, CoverRules
from qaqc.services.geo_rules import GeoRules
from qaqc.services.outlier_rules import OutlierRules
from qaqc.services.site_code_rules import SiteCodeRules
from qaqc.services.storage import (
    OUTLIER_LOG_PREFIX,
    SITE_CODE_LOG_PREFIX,
    StorageService,
)

logger = structlog.get_logger(__name__)


# Check pass run after site codes, in this order; spp and dbh only get the
# site-code pass.
GEO_KEYS = ("site",)
OUTLIER_KEYS = ("browns", "cwd", "resprout", "seedling", "shrub", "soils", "combustion", "disk")
COVER_KEYS = tuple(COVER_COLUMNS)
CHECK_ORDER = (
    "site", "browns", "cwd", "ground", "plant",
    "resprout", "seedling", "shrub", "soils", "combustion", "disk",
)


@dataclass
class LoadedDataset:
    """One datasheet threaded through every pass, with the logs it produced."""
    keyword: str
    filename: str
    df: pd.DataFrame
    logs: Dict[str, pd.DataFrame] = field(default_factory=dict)


def _finish_pass(
    dataset: LoadedDataset,
    pass_name: str,
    log_prefix: str,
    log_frame: pd.DataFrame,
    counts: dict,
    year: str,
    storage: StorageService,
    reviewer,
) -> PassSummary:
    """Persist the corrected datasheet and the pass log, then show the summary."""
    dataset.logs[pass_name] = log_frame
    storage.save_dataset(dataset.df, year, dataset.filename)
    log_path = storage.save_log(log_frame, year, log_prefix, dataset.filename)

    log_pass_event(logger, "finished", pass_name, dataset.filename, **counts)
    reviewer.show_summary(dataset.filename, log_frame)

    return PassSummary(
        keyword=dataset.keyword,
        filename=dataset.filename,
        pass_name=pass_name,
        log_file=log_path.name,
        log_entries=len(log_frame),
        counts=counts,
    )


def run_site_code_pass(
    dataset: LoadedDataset, year: str, storage: StorageService, reviewer
) -> PassSummary:
    log_pass_event(logger, "started", "site_code", dataset.filename)
    runner = SiteCodeRules(df=dataset.df, filename=dataset.filename)
    counts = runner.run_all()
    dataset.df = runner.df
    return _finish_pass(
        dataset, "site_code", SITE_CODE_LOG_PREFIX, runner.log.to_frame(), counts, year, storage, reviewer
    )


def resolve_sensitivity(
    filename: str,
    reviewer,
    sensitivity: Optional[Union[Sensitivity, str]],
    config: Settings,
) -> Sensitivity:
    """Explicit argument first, then configuration, then ask the reviewer."""
    chosen = sensitivity or config.OUTLIER_SENSITIVITY
    if chosen:
        return chosen if isinstance(chosen, Sensitivity) else Sensitivity.parse(chosen)
    return reviewer.choose_sensitivity(filename)


def run_check_pass(
    dataset: LoadedDataset,
    year: str,
    storage: StorageService,
    reviewer,
    sensitivity: Optional[Union[Sensitivity, str]] = None,
    config: Optional[Settings] = None,
) -> Optional[PassSummary]:
    """Run the check pass that applies to this dataset kind, if any."""
    config = config or default_settings
    key = dataset.keyword

    if key in GEO_KEYS:
        pass_name = "geo"
        runner = GeoRules(
            df=dataset.df,
            reviewer=reviewer,
            filename=dataset.filename,
            moisture_tolerance=config.MOISTURE_MATCH_TOLERANCE,
        )
    elif key in COVER_KEYS:
        pass_name = "cover"
        runner = CoverRules(
            df=dataset.df,
            reviewer=reviewer,
            column=COVER_COLUMNS[key],
            filename=dataset.filename,
        )
    elif key in OUTLIER_KEYS:
        pass_name = "outlier"
        runner = OutlierRules(
            df=dataset.df,
            reviewer=reviewer,
            sensitivity=resolve_sensitivity(dataset.filename, reviewer, sensitivity, config),
            filename=dataset.filename,
            quartile_method=config.QUARTILE_METHOD,
            zero_fraction=config.ZERO_RARITY_FRACTION,
        )
    else:
        return None

    log_pass_event(logger, "started", pass_name, dataset.filename)
    counts = runner.run_all()
    dataset.df = runner.df
    return _finish_pass(
        dataset, pass_name, OUTLIER_LOG_PREFIX, runner.log.to_frame(), counts, year, storage, reviewer
    )


def process_year(
    year: str,
    reviewer,
    storage: Optional[StorageService] = None,
    sensitivity: Optional[Union[Sensitivity, str]] = None,
    config: Optional[Settings] = None,
) -> YearReport:
    """
    Run QAQC over one survey year:
      1. Discover and load each datasheet from the raw folder
      2. Site-code pass over every loaded datasheet
      3. Geo / cover / outlier pass for the datasheets they apply to
      4. Corrected datasheets and pass logs are written after every pass

    Discovery and schema errors propagate; a pass never half-completes.
    """
    config = config or default_settings
    storage = storage or StorageService(config)
    storage.prepare_output_dirs(year)

    files = storage.discover(year, reviewer, config.DATASET_KEYWORDS)
    datasets: Dict[str, LoadedDataset] = {
        key: LoadedDataset(keyword=key, filename=f.filename, df=storage.load(f))
        for key, f in files.items()
    }
    skipped = [key for key in config.DATASET_KEYWORDS if key not in datasets]
    logger.info("Datasets loaded", year=year, loaded=list(datasets), skipped=skipped)

    passes = []
    for dataset in datasets.values():
        passes.append(run_site_code_pass(dataset, year, storage, reviewer))

    for key in CHECK_ORDER:
        if key not in datasets:
            continue
        summary = run_check_pass(datasets[key], year, storage, reviewer, sensitivity, config)
        if summary is not None:
            passes.append(summary)

    return YearReport(
        year=str(year),
        datasets_loaded=list(datasets),
        datasets_skipped=skipped,
        passes=passes,
    )

