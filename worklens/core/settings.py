"""
Pipeline settings
Typed view over the [pipeline] and [worker] config sections
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from worklens.core.logger import get_logger

logger = get_logger(__name__)


class PipelineSettings(BaseModel):
    """Thresholds and worker sizing for the aggregation pipeline"""

    # [pipeline]
    batch_size: int = Field(20, ge=1)
    initial_grouping_threshold: int = Field(4, ge=1)
    update_threshold: int = Field(10, ge=1)
    link_similarity: float = Field(0.85, ge=0.0, le=1.0)
    mutate_similarity: float = Field(0.70, ge=0.0, le=1.0)
    merge_similarity: float = Field(0.75, ge=0.0, le=1.0)
    merge_max_overlap: float = Field(0.5, ge=0.0, le=1.0)
    dedup_every_passes: int = Field(5, ge=1)
    archive_prefix: str = "[MERGED] "
    max_flush_attempts: int = Field(3, ge=1)
    flush_retry_base_seconds: float = Field(30.0, ge=0.0)

    # [worker]
    sweep_interval: float = Field(60.0, gt=0.0)
    sweep_batch_size: int = Field(2, ge=1)
    sweep_batch_delay: float = Field(1.0, ge=0.0)
    queue_workers: int = Field(4, ge=1)
    queue_max_attempts: int = Field(3, ge=1)
    queue_retry_base_seconds: float = Field(1.0, ge=0.0)

    @model_validator(mode="after")
    def _check_bands(self) -> "PipelineSettings":
        if self.mutate_similarity > self.link_similarity:
            raise ValueError(
                f"mutate_similarity ({self.mutate_similarity}) must not exceed "
                f"link_similarity ({self.link_similarity})"
            )
        return self

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineSettings":
        """Build from a merged config dict ([pipeline] + [worker] sections)"""
        values: Dict[str, Any] = {}
        values.update(config.get("pipeline", {}) or {})
        values.update(config.get("worker", {}) or {})
        known = {k: v for k, v in values.items() if k in cls.model_fields}
        unknown = set(values) - set(known)
        if unknown:
            logger.debug(f"Ignoring unknown pipeline settings: {sorted(unknown)}")
        return cls(**known)


_settings: Optional[PipelineSettings] = None


def get_settings() -> PipelineSettings:
    """Get global settings, loaded from the global config on first use"""
    global _settings
    if _settings is None:
        from worklens.config.loader import get_config

        _settings = PipelineSettings.from_config(get_config().as_dict())
        logger.debug("✓ Pipeline settings initialized")
    return _settings


def reset_settings() -> None:
    """Drop cached settings (mainly for testing)"""
    global _settings
    _settings = None
