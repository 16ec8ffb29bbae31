"""
Report settings: YAML configuration plus JSON session save/load.

Settings cover the run-naming parameters, how export columns are recognised,
the unmatched-sample policy and the thresholds used by the plots.
"""

import json
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import yaml

from perseus_parser import (
    DEFAULT_ANNOTATION_COLUMNS,
    DIFFERENCE_MARKER,
    PEPTIDE_COUNT_MARKER,
    PVALUE_MARKER,
    PerseusParser,
)
from reconciliation import UnmatchedPolicy

DEFAULT_CONFIG_PATH = "config/report_settings.yaml"
CORRELATION_METHODS = ["pearson", "spearman", "kendall"]


@dataclass
class ReportSettings:
    """All knobs of one report run."""

    researcher_name: str = ""
    work_order: str = ""
    annotation_columns: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_ANNOTATION_COLUMNS)
    )
    peptide_marker: str = PEPTIDE_COUNT_MARKER
    pvalue_marker: str = PVALUE_MARKER
    difference_marker: str = DIFFERENCE_MARKER
    unmatched_samples: str = UnmatchedPolicy.KEEP.value
    fc_threshold: float = 1.0  # log2 fold change
    pvalue_threshold: float = 0.05
    correlation_method: str = "pearson"
    top_n_labels: int = 10

    def __post_init__(self):
        # Raises ValueError on an unknown policy
        UnmatchedPolicy(self.unmatched_samples)
        if self.correlation_method not in CORRELATION_METHODS:
            raise ValueError(
                f"Unknown correlation method '{self.correlation_method}'. "
                f"Choose one of: {', '.join(CORRELATION_METHODS)}."
            )
        if not 0 < self.pvalue_threshold <= 1:
            raise ValueError(f"pvalue_threshold must be in (0, 1], got {self.pvalue_threshold}")
        if self.fc_threshold < 0:
            raise ValueError(f"fc_threshold must be non-negative, got {self.fc_threshold}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown report settings: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> "ReportSettings":
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return ReportSettings.from_dict(data)

    def make_parser(self) -> PerseusParser:
        return PerseusParser(
            annotation_columns=self.annotation_columns,
            peptide_marker=self.peptide_marker,
            pvalue_marker=self.pvalue_marker,
            difference_marker=self.difference_marker,
        )


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> ReportSettings:
    """
    Load report settings from a YAML file.

    The file holds a top-level ``report`` mapping whose keys are ReportSettings
    fields. When ``config_path`` is None the default path is used if it exists,
    otherwise built-in defaults apply.

    Args:
        config_path: Path to YAML config file
        **overrides: Field values taking precedence over the file (None is ignored)

    Returns:
        ReportSettings
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_PATH)
        if not config_file.exists():
            return ReportSettings().with_overrides(**overrides)
    else:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Report settings config not found: {config_path}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f) or {}

    settings = ReportSettings.from_dict(config.get("report", {}) or {})
    return settings.with_overrides(**overrides)


class SessionManager:
    """Save and load report settings as JSON."""

    PLATFORM_VERSION = "1.0.0"

    @staticmethod
    def save_session(settings: ReportSettings) -> str:
        """Serialize settings to a JSON string (no tables or figures)."""
        data = {
            "_meta": {
                "platform_version": SessionManager.PLATFORM_VERSION,
                "saved_at": datetime.now().isoformat(),
            }
        }
        data.update(settings.to_dict())
        return json.dumps(data, indent=2, default=str)

    @staticmethod
    def load_session(json_str: str) -> ReportSettings:
        """Deserialize JSON back to ReportSettings."""
        data = json.loads(json_str)
        data.pop("_meta", None)
        return ReportSettings.from_dict(data)

    @staticmethod
    def get_session_summary(settings: ReportSettings) -> dict:
        """Human-readable summary of the current settings."""
        return {
            "researcher_name": settings.researcher_name or "(not set)",
            "work_order": settings.work_order or "(not set)",
            "unmatched_samples": settings.unmatched_samples,
            "thresholds": {
                "pvalue": settings.pvalue_threshold,
                "log2_fold_change": settings.fc_threshold,
            },
            "correlation_method": settings.correlation_method,
        }
