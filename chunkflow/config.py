"""
Pipeline configuration.

Defaults live in config/config.yaml; `load_settings` validates the YAML
into typed sections.  A missing file means "all defaults".  Unknown keys are
rejected so typos surface immediately.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from chunkflow.chunking.segmenter import Segmenter
from chunkflow.coordination.buffer import DocumentBuffer
from chunkflow.coordination.coordinator import ContentUpdateCoordinator
from chunkflow.dispatch.analysis import Analyzer, guarded
from chunkflow.dispatch.dispatcher import ChunkDispatcher
from chunkflow.dispatch.session import AnalysisSession
from chunkflow.schemas import SegmenterOptions

DEFAULT_CONFIG_PATH = "config/config.yaml"
LOG_LEVEL_ENV = "CHUNKFLOW_LOG_LEVEL"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SegmenterSettings(_Section):
    max_chunk_size: int = 5000
    overlap_size: int = 200
    respect_sentence_boundaries: bool = True
    min_window_ratio: float = 0.6
    custom_patterns: list[str] = Field(default_factory=list)

    def to_options(self) -> SegmenterOptions:
        return SegmenterOptions(
            max_chunk_size=self.max_chunk_size,
            overlap_size=self.overlap_size,
            respect_sentence_boundaries=self.respect_sentence_boundaries,
            min_window_ratio=self.min_window_ratio,
            custom_patterns=tuple(self.custom_patterns),
        )


class DispatchSettings(_Section):
    max_concurrency: int = 2
    background_delay_s: float = 30.0
    analysis_timeout_s: float = 20.0
    analysis_retries: int = 1
    debounce_s: float = 0.5
    min_text_length: int = 10


class CoordinatorSettings(_Section):
    debounce_window_s: float = 0.3
    max_queue_size: int = 50
    inter_apply_pause_s: float = 0.01


class LoggingSettings(_Section):
    level: str = "INFO"
    file: Optional[str] = "logs/chunkflow.log"


class Settings(_Section):
    segmenter: SegmenterSettings = Field(default_factory=SegmenterSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(path: Optional[str | Path] = DEFAULT_CONFIG_PATH) -> Settings:
    """Read and validate settings; environment overrides are applied last."""
    raw: dict = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            logger.debug(f"[Config] Loaded {config_path}")
        else:
            logger.debug(f"[Config] {config_path} not found, using defaults")

    settings = Settings.model_validate(raw)

    level = os.getenv(LOG_LEVEL_ENV)
    if level:
        settings.logging.level = level.upper()
    return settings


# --- Factories ----------------------------------------------------------------

def build_segmenter(settings: Settings) -> Segmenter:
    return Segmenter(settings.segmenter.to_options())


def build_dispatcher(settings: Settings) -> ChunkDispatcher:
    return ChunkDispatcher(
        max_concurrency=settings.dispatch.max_concurrency,
        background_delay_s=settings.dispatch.background_delay_s,
    )


def build_session(settings: Settings, analyze: Analyzer, **kwargs) -> AnalysisSession:
    """Session whose analyzer is wrapped with the configured timeout and retries."""
    return AnalysisSession(
        segmenter=build_segmenter(settings),
        dispatcher=build_dispatcher(settings),
        analyze=guarded(
            analyze,
            timeout_s=settings.dispatch.analysis_timeout_s,
            retries=settings.dispatch.analysis_retries,
        ),
        debounce_s=settings.dispatch.debounce_s,
        min_text_length=settings.dispatch.min_text_length,
        **kwargs,
    )


def build_coordinator(settings: Settings, buffer: DocumentBuffer) -> ContentUpdateCoordinator:
    return ContentUpdateCoordinator(
        buffer,
        debounce_window_s=settings.coordinator.debounce_window_s,
        max_queue_size=settings.coordinator.max_queue_size,
        inter_apply_pause_s=settings.coordinator.inter_apply_pause_s,
    )
