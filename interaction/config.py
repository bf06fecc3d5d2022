"""Pipeline configuration loaded from YAML with CLI overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from interaction.io_utils import load_yaml
from interaction.types import DEFAULT_LABEL_PRECEDENCE

LOGGER = logging.getLogger("interaction.config")


@dataclass
class PipelineConfig:
    # Sampling cadence
    tick_period_s: float = 2.0
    match_workers: int = 4
    # Recognition
    match_threshold: float = 0.6
    # Roles
    target_id: Optional[str] = None
    owner_id: Optional[str] = None
    # Emotion weighting
    positive_label: str = "happy"
    high_weight: int = 5
    low_weight: int = 1
    label_precedence: Tuple[str, ...] = DEFAULT_LABEL_PRECEDENCE
    # 0 disables the per-pair cooldown
    cooldown_s: float = 0.0
    # Capture / detection
    camera: Union[int, str] = 0
    det_size: Tuple[int, int] = (640, 640)
    det_thresh: float = 0.5
    providers: Optional[Tuple[str, ...]] = None
    # Persistence
    db_path: Path = Path("data/interactions.db")
    enrollment_parquet: Path = Path("data/enrollment.parquet")
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.tick_period_s <= 0:
            raise ValueError(f"tick_period_s must be positive, got {self.tick_period_s}")
        if self.match_workers < 1:
            raise ValueError(f"match_workers must be >= 1, got {self.match_workers}")
        if self.match_threshold <= 0:
            raise ValueError(f"match_threshold must be positive, got {self.match_threshold}")
        if self.cooldown_s < 0:
            raise ValueError(f"cooldown_s must be >= 0, got {self.cooldown_s}")
        self.label_precedence = tuple(self.label_precedence)
        self.det_size = tuple(int(v) for v in self.det_size)  # type: ignore[assignment]
        if self.providers is not None:
            self.providers = tuple(self.providers)
        self.db_path = Path(self.db_path)
        self.enrollment_parquet = Path(self.enrollment_parquet)
        if self.target_id is not None:
            self.target_id = str(self.target_id)
        if self.owner_id is not None:
            self.owner_id = str(self.owner_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {key: value for key, value in data.items() if key in known}
        extra = {key: value for key, value in data.items() if key not in known}
        if extra:
            LOGGER.warning("Ignoring unknown pipeline config keys: %s", sorted(extra))
        return cls(extra=extra, **kwargs)

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        applied = {key: value for key, value in overrides.items() if value is not None}
        if not applied:
            return self
        LOGGER.debug("Applying config overrides %s", applied)
        return replace(self, **applied)


def load_pipeline_config(path: Optional[Path] = None, **overrides: Any) -> PipelineConfig:
    """Load the pipeline YAML (if present) and layer CLI overrides on top."""
    data: Dict[str, Any] = {}
    if path is not None:
        if path.exists():
            data = load_yaml(path)
        else:
            LOGGER.warning("Pipeline config %s not found; using defaults", path)
    config = PipelineConfig.from_dict(data).with_overrides(**overrides)
    LOGGER.info(
        "Pipeline config: tick=%.2fs threshold=%.2f target=%s owner=%s weights=(%d,%d) cooldown=%.1fs",
        config.tick_period_s,
        config.match_threshold,
        config.target_id,
        config.owner_id,
        config.low_weight,
        config.high_weight,
        config.cooldown_s,
    )
    return config
