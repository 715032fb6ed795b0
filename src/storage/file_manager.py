# src/storage/file_manager.py

"""Handles saving run summaries to disk."""

import json
import logging
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings
from src.models.job_run import RunSummary

logger = logging.getLogger("price_refresh.storage")


class FileManager:
    """Handles saving run summaries to disk."""

    def __init__(self, results_dir: Path | None = None) -> None:
        self.results_dir: Path = results_dir or Settings.RESULTS_DIR
        self.results_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("FileManager initialised, results_dir=%s", self.results_dir)

    def save_run_summary(self, summary: RunSummary) -> Path:
        """Save a run summary to a timestamped JSON file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        run_part = f"_{summary.run_id}" if summary.run_id is not None else ""
        filename = f"run_{summary.platform or 'all'}{run_part}_{timestamp}.json"
        filepath = self.results_dir / filename

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(summary.to_dict(), f, ensure_ascii=False, indent=2)

        logger.info(
            "Saved %s run summary to %s", summary.status, filepath,
        )
        return filepath
