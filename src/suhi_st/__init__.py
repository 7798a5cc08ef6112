"""Mean summer surface temperature from Landsat Collection 2 Level-2 imagery."""

__version__ = "0.1.0"

from .config import PipelineConfig, setup_environment
from .pipeline import PipelineResult, build_collection, run_pipeline

__all__ = [
    'PipelineConfig',
    'PipelineResult',
    'build_collection',
    'run_pipeline',
    'setup_environment',
]
