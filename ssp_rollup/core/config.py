"""
Pipeline configuration.

Defaults match the published dashboard: 20k map points, 10k recent
records, top 100 neighborhoods, top 50 municipalities, top 10 brands.
Environment variables (SSP_*) override the defaults and command-line
flags in update_data.py override both.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class PipelineConfig:
    data_dir: Path = Path('data')
    raw_dir: Path = Path('data') / 'raw'
    source_url_template: Optional[str] = None   # e.g. "https://.../VeiculosSubtraidos_{year}.csv"
    first_year: int = 2020

    map_capacity: int = 20_000
    recent_capacity: int = 10_000
    top_brands: int = 10
    top_neighborhoods: int = 100
    top_municipalities: int = 50
    top_police_stations: int = 50

    # Download retry policy
    max_attempts: int = 4
    base_delay: float = 2.0
    request_timeout: float = 60.0

    @classmethod
    def from_env(cls, environ=None) -> "PipelineConfig":
        """Build a config from SSP_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()

        if env.get('SSP_DATA_DIR'):
            data_dir = Path(env['SSP_DATA_DIR'])
            config = replace(config, data_dir=data_dir, raw_dir=data_dir / 'raw')
        if env.get('SSP_RAW_DIR'):
            config = replace(config, raw_dir=Path(env['SSP_RAW_DIR']))
        if env.get('SSP_SOURCE_URL'):
            config = replace(config, source_url_template=env['SSP_SOURCE_URL'])
        if env.get('SSP_FIRST_YEAR'):
            config = replace(config, first_year=int(env['SSP_FIRST_YEAR']))
        if env.get('SSP_MAX_ATTEMPTS'):
            config = replace(config, max_attempts=int(env['SSP_MAX_ATTEMPTS']))

        return config

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
