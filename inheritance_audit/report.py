#!/usr/bin/env python3
"""
Partitioned report output.

Findings are appended to CSV report pages inside a per-audit results folder.
When the current page reaches its capacity a new page ("Part N") is created,
moved into the results folder, and given a header row.

The partition state is an immutable value: ReportWriter.write() returns the
updated state and the caller passes it into the next call.
"""

import csv
import json
import logging
import os
import re
from datetime import datetime
from typing import List, NamedTuple, Optional

from .diff import Finding

logger = logging.getLogger(__name__)

REPORT_HEADERS = ["Path", "Link", "Type", "Users with assigned access (role)"]
RESULTS_FOLDER_PREFIX = "Permission audit"
STAGING_DIRNAME = ".staging"


class PartitionState(NamedTuple):
    current_page_id: Optional[str]
    rows_written: int
    part_index: int
    container_id: str
    root_label: str

    def to_json(self) -> str:
        return json.dumps(self._asdict(), sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> "PartitionState":
        return cls(**json.loads(payload))


def _safe_name(name: str) -> str:
    cleaned = re.sub(r'[\\/:*?"<>|]+', "_", name).strip()
    return cleaned or "root"


class CsvPageStore:
    """
    Creates report pages as CSV files.

    Pages are born in a staging directory and then relocated into their
    results folder; page ids are file paths.
    """

    def __init__(self, results_dir: str):
        self.results_dir = results_dir

    def create_container(self, root_label: str) -> str:
        """Create the results folder for one audit and return its path."""
        stamp = datetime.now().strftime("%Y-%m-%d %H%M")
        base = os.path.join(self.results_dir, f"{RESULTS_FOLDER_PREFIX} {_safe_name(root_label)} - {stamp}")
        path = base
        suffix = 1
        while os.path.exists(path):
            suffix += 1
            path = f"{base} ({suffix})"
        os.makedirs(path)
        return path

    def create_page(self, title: str, header: List[str]) -> str:
        staging = os.path.join(self.results_dir, STAGING_DIRNAME)
        os.makedirs(staging, exist_ok=True)
        page_id = os.path.join(staging, f"{_safe_name(title)}.csv")
        with open(page_id, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(header)
        return page_id

    def relocate(self, page_id: str, container_id: str) -> str:
        target = os.path.join(container_id, os.path.basename(page_id))
        os.replace(page_id, target)
        return target

    def discard(self, page_id: str) -> None:
        """Remove a page that never made it into its results folder."""
        try:
            os.remove(page_id)
        except FileNotFoundError:
            pass

    def append_row(self, page_id: str, row: List[str]) -> None:
        if not os.path.exists(page_id):
            raise FileNotFoundError(f"Report page does not exist: {page_id}")
        with open(page_id, "a", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(row)

    def read_rows(self, page_id: str) -> List[List[str]]:
        with open(page_id, newline="", encoding="utf-8") as f:
            return list(csv.reader(f))

    def list_pages(self, container_id: str) -> List[str]:
        return sorted(
            os.path.join(container_id, name)
            for name in os.listdir(container_id) if name.endswith(".csv")
        )


class ReportWriter:
    """Appends findings to capacity-bounded report pages."""

    def __init__(self, page_store: CsvPageStore, capacity: int):
        if capacity < 1:
            raise ValueError(f"page capacity must be at least 1, got {capacity}")
        self.page_store = page_store
        self.capacity = capacity

    def open_partition(self, root_label: str) -> PartitionState:
        container_id = self.page_store.create_container(root_label)
        logger.info(f"Results folder: {container_id}")
        return PartitionState(None, 0, 0, container_id, root_label)

    def _roll_over(self, state: PartitionState) -> PartitionState:
        part_index = state.part_index + 1
        title = f"Report - {state.root_label} (Part {part_index})"
        page_id = self.page_store.create_page(title, REPORT_HEADERS)
        try:
            page_id = self.page_store.relocate(page_id, state.container_id)
        except OSError:
            self.page_store.discard(page_id)
            raise
        logger.info(f"Started report page {part_index}: {page_id}")
        return state._replace(current_page_id=page_id, rows_written=0, part_index=part_index)

    def write(self, state: PartitionState, finding: Finding) -> PartitionState:
        """Append one finding, starting a new page first when needed."""
        if state.current_page_id is None or state.rows_written >= self.capacity:
            try:
                state = self._roll_over(state)
            except OSError as e:
                logger.error(f"Failed to start report page {state.part_index + 1}, "
                             f"dropping row for '{finding.path}': {e}")
                return state

        try:
            self.page_store.append_row(state.current_page_id, finding.as_row())
        except OSError as e:
            logger.error(f"Failed to write row for '{finding.path}' to page {state.current_page_id}: {e}")
            return state
        return state._replace(rows_written=state.rows_written + 1)
