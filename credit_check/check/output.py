"""Audit-trail serialisation of a credit check report."""

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from credit_check.config import ConfigError
from credit_check.models import CreditCheckReport

logger = logging.getLogger(__name__)


def render_report(report: CreditCheckReport) -> str:
    return json.dumps(report.to_output(), indent=2, ensure_ascii=False)


def write_report(report: CreditCheckReport, path: str | Path) -> Path:
    """Write the report JSON atomically (temp file + rename)."""
    filepath = Path(path)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            _ = f.write(render_report(report))
            _ = f.write("\n")
        os.replace(tmp_path, filepath)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise

    logger.info("Report written to %s", filepath)
    return filepath


def parse_report(text: str) -> CreditCheckReport:
    """Rebuild a report from its JSON output, e.g. for posting a saved run.

    Raises:
        ConfigError: If the text is not a report produced by ``render_report``.
    """
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Report is not valid JSON: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        msg = "Report must be a JSON object"
        raise ConfigError(msg)
    try:
        return CreditCheckReport.model_validate(data)
    except ValueError as exc:
        msg = f"Report has an unexpected shape: {exc}"
        raise ConfigError(msg) from exc


def load_report(path: str | Path) -> CreditCheckReport:
    filepath = Path(path)
    if not filepath.is_file():
        msg = f"Report file not found: {filepath}"
        raise ConfigError(msg)
    return parse_report(filepath.read_text(encoding="utf-8"))
