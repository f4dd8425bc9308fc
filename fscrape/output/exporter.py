"""Renders scraped posts as JSON or CSV and writes export files."""

import csv
import io
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from pydantic import BaseModel

from fscrape.utils.exceptions import UnsupportedFormatError

logger = structlog.get_logger()


class Exporter:
    """Stateless renderer plus a file writer"""

    EXTENSIONS = {"json": "json", "csv": "csv"}

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._clock = clock
        self._renderers: Dict[str, Callable[[List[Dict[str, Any]]], str]] = {
            "json": self._render_json,
            "csv": self._render_csv,
        }

    @property
    def formats(self) -> List[str]:
        return sorted(self._renderers)

    def render(self, payload: Sequence[Any], fmt: str) -> str:
        """Render a sequence of records.

        Args:
            payload: Pydantic models or plain dicts
            fmt: "json" or "csv"

        Raises:
            UnsupportedFormatError: No renderer for fmt
        """
        renderer = self._renderers.get(fmt.lower())
        if renderer is None:
            raise UnsupportedFormatError(fmt)
        return renderer([self._to_record(item) for item in payload])

    def export(
        self,
        payload: Sequence[Any],
        fmt: str,
        output_dir: str | Path,
        basename: Optional[str] = None,
    ) -> Path:
        """Render and write to `<output_dir>/<basename>.<ext>`.

        Returns:
            Path of the written file
        """
        content = self.render(payload, fmt)

        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        name = basename or f"posts_{self._clock().strftime('%Y%m%d_%H%M%S')}"
        file_path = output_path / f"{name}.{self.EXTENSIONS[fmt.lower()]}"

        temp_file = file_path.with_suffix(file_path.suffix + ".tmp")
        with open(temp_file, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(temp_file, file_path)

        logger.info(
            "export_written", path=str(file_path), format=fmt, records=len(payload)
        )
        return file_path

    @staticmethod
    def _to_record(item: Any) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        if isinstance(item, dict):
            return item
        raise TypeError(f"Cannot export {type(item).__name__}")

    @staticmethod
    def _render_json(records: List[Dict[str, Any]]) -> str:
        return json.dumps(records, indent=2, default=str)

    @staticmethod
    def _render_csv(records: List[Dict[str, Any]]) -> str:
        # Columns in first-seen order across all records
        fieldnames: List[str] = []
        for record in records:
            for key in record:
                if key not in fieldnames:
                    fieldnames.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
        writer.writeheader()
        for record in records:
            writer.writerow(
                {
                    key: json.dumps(value) if isinstance(value, (dict, list)) else value
                    for key, value in record.items()
                }
            )
        return buffer.getvalue()
