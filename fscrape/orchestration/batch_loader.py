"""Batch file loading.

Three formats are accepted:

- JSON or YAML: either a list of operations or a mapping with
  `operations` plus execution flags (`parallel`, `max_concurrency`,
  `continue_on_error`, `dry_run`).
- Plain text, one command per line, `#` starts a comment:

      scrape reddit programming python
      scrape hackernews top
      export csv ./exports
      purge 30
      admin backup ./backups/sessions.json

Unknown text commands are logged and skipped.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from pydantic import ValidationError

from fscrape.models.batch import BatchConfig, BatchOperation, OperationKind
from fscrape.models.config import BatchSettings
from fscrape.services.config_manager import ConfigValidationError
from fscrape.utils.exceptions import UnsupportedFormatError

logger = structlog.get_logger()

DEFAULT_EXPORT_DIR = "./exports"
DEFAULT_PURGE_DAYS = 30


def load_batch_config(
    path: str | Path, defaults: Optional[BatchSettings] = None
) -> BatchConfig:
    """Load a batch file, filling unset flags from `defaults`.

    Raises:
        FileNotFoundError: File does not exist
        UnsupportedFormatError: Unknown file extension
        ConfigValidationError: File cannot be parsed or validated
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Batch file not found: {file_path}")

    suffix = file_path.suffix.lower()
    content = file_path.read_text(encoding="utf-8")

    if suffix == ".json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Invalid JSON batch file: {e}")
    elif suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML batch file: {e}")
    elif suffix in (".txt", ".batch", ""):
        data = {"operations": parse_batch_text(content)}
    else:
        raise UnsupportedFormatError(suffix)

    config = _build_config(data, defaults or BatchSettings())
    logger.info(
        "batch_config_loaded",
        path=str(file_path),
        operations=len(config.operations),
        parallel=config.parallel,
    )
    return config


def parse_batch_text(content: str) -> List[Dict[str, Any]]:
    """Parse the line-oriented batch format into operation dicts"""
    operations: List[Dict[str, Any]] = []

    for line_no, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split()
        command = parts[0].lower()
        args = parts[1:]

        if command == OperationKind.SCRAPE.value:
            if not args:
                logger.warning("batch_line_invalid", line=line_no, reason="missing source")
                continue
            operations.append(
                {"kind": command, "target": args[0].lower(), "items": args[1:]}
            )

        elif command == OperationKind.EXPORT.value:
            operations.append(
                {
                    "kind": command,
                    "target": (args[0] if args else "json").lower(),
                    "options": {
                        "output_dir": args[1] if len(args) > 1 else DEFAULT_EXPORT_DIR
                    },
                }
            )

        elif command in (OperationKind.PURGE.value, "clean"):
            try:
                days = int(args[0]) if args else DEFAULT_PURGE_DAYS
            except ValueError:
                logger.warning("batch_line_invalid", line=line_no, reason="days not a number")
                continue
            operations.append({"kind": OperationKind.PURGE.value, "options": {"days": days}})

        elif command == OperationKind.ADMIN.value:
            if not args:
                logger.warning("batch_line_invalid", line=line_no, reason="missing action")
                continue
            operations.append(
                {"kind": command, "target": args[0].lower(), "items": args[1:]}
            )

        else:
            logger.warning("batch_command_unknown", line=line_no, command=command)

    return operations


def _build_config(data: Any, defaults: BatchSettings) -> BatchConfig:
    if isinstance(data, list):
        data = {"operations": data}
    if not isinstance(data, dict):
        raise ConfigValidationError("Batch file must contain a list or a mapping")

    merged = defaults.model_dump()
    merged.update({k: v for k, v in data.items() if v is not None})

    try:
        return BatchConfig(
            operations=[BatchOperation(**op) for op in merged.get("operations") or []],
            parallel=merged["parallel"],
            max_concurrency=merged["max_concurrency"],
            continue_on_error=merged["continue_on_error"],
            dry_run=merged["dry_run"],
        )
    except (TypeError, ValidationError) as e:
        raise ConfigValidationError(f"Invalid batch configuration: {e}")
