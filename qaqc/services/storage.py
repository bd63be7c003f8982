from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import structlog

from qaqc.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


SITE_CODE_LOG_PREFIX = "QAQC-SiteName"
OUTLIER_LOG_PREFIX = "QAQC-Outlier"


class DatasetDiscoveryError(Exception):
    """A dataset file is missing (and not skipped) or ambiguous."""


@dataclass
class DatasetFile:
    keyword: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


def log_filename(prefix: str, filename: str) -> str:
    return f"{prefix}_{filename}"


class StorageService:
    """
    Year-folder layout under the data root:

        <root>/Raw_CSVs/<year>/        field CSVs as exported
        <root>/Processed_Data/<year>/  corrected datasheets
        <root>/QAQC_Notes/<year>/      one log per pass per datasheet
    """

    def __init__(self, config: Optional[Settings] = None, root: Optional[str] = None):
        self.settings = config or default_settings
        self.root = Path(root or self.settings.DATA_ROOT)

    def raw_dir(self, year: str) -> Path:
        return self.root / self.settings.RAW_DIR / str(year)

    def processed_dir(self, year: str) -> Path:
        return self.root / self.settings.PROCESSED_DIR / str(year)

    def notes_dir(self, year: str) -> Path:
        return self.root / self.settings.NOTES_DIR / str(year)

    def prepare_output_dirs(self, year: str) -> None:
        for path in (self.processed_dir(year), self.notes_dir(year)):
            path.mkdir(parents=True, exist_ok=True)

    def list_csv_files(self, year: str) -> List[Path]:
        raw = self.raw_dir(year)
        if not raw.is_dir():
            raise DatasetDiscoveryError(f"Raw data folder not found: {raw}")
        return sorted(p for p in raw.iterdir() if p.is_file() and p.suffix.lower() == ".csv")

    def discover(self, year: str, reviewer, keywords: Optional[List[str]] = None) -> Dict[str, DatasetFile]:
        """
        Match each dataset keyword to exactly one CSV in the year's raw folder.

        A keyword with no file is skipped only if the reviewer agrees;
        otherwise, or when several files match, DatasetDiscoveryError is raised.
        """
        keywords = keywords or self.settings.DATASET_KEYWORDS
        files = self.list_csv_files(year)
        found: Dict[str, DatasetFile] = {}

        for key in keywords:
            matches = [p for p in files if key.lower() in p.name.lower()]
            if not matches:
                if reviewer.confirm_skip_dataset(key):
                    logger.warning("Dataset skipped", keyword=key, year=year)
                    continue
                raise DatasetDiscoveryError(f"Missing file for key: {key}. Please fix before continuing.")
            if len(matches) > 1:
                names = ", ".join(p.name for p in matches)
                raise DatasetDiscoveryError(f"Multiple files found for key: {key} ({names}). Please fix filenames.")

            found[key] = DatasetFile(keyword=key, path=matches[0])
            logger.info("Dataset found", keyword=key, file=matches[0].name)

        return found

    def load(self, dataset: DatasetFile) -> pd.DataFrame:
        return pd.read_csv(dataset.path)

    def save_dataset(self, df: pd.DataFrame, year: str, filename: str) -> Path:
        path = self.processed_dir(year) / filename
        df.to_csv(path, index=False)
        return path

    def save_log(self, log_frame: pd.DataFrame, year: str, prefix: str, filename: str) -> Path:
        path = self.notes_dir(year) / log_filename(prefix, filename)
        log_frame.to_csv(path, index=False)
        return path
