#!/usr/bin/env python3
"""
Mean Surface Temperature - Main Application
===========================================

Mean July-August Landsat surface temperature over the MRCOG region,
exported as a GeoTIFF.
"""

import argparse
import sys

from suhi_st.config import PipelineConfig, setup_environment
from suhi_st.export.tasks import TaskState
from suhi_st.pipeline import run_pipeline
from suhi_st.utils.logging import get_logger, setup_logging
from suhi_st.visualization.map_display import enable_tile_cache


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Mean surface temperature (SUHI) pipeline')
    parser.add_argument('--config', type=str, help='Configuration file (JSON or YAML)')
    parser.add_argument('--start-day', type=int, help='First day of year (1-366)')
    parser.add_argument('--end-day', type=int, help='Last day of year (1-366)')
    parser.add_argument('--start-year', type=int, help='First calendar year')
    parser.add_argument('--end-year', type=int, help='Last calendar year')
    parser.add_argument('--cloud-cover', type=float,
                        help='Keep scenes with cloud cover strictly below this percentage')
    parser.add_argument('--analysis-scale', type=float, help='Evaluation grid resolution in metres')
    parser.add_argument('--export-scale', type=float, help='Export resolution in metres')
    parser.add_argument('--export-root', type=str, help='Directory that receives export folders')
    parser.add_argument('--no-display', action='store_true', help='Do not open the map window')
    parser.add_argument('--save-map', type=str, metavar='PATH', help='Save the rendered map to PATH')
    parser.add_argument('--save-histogram', type=str, metavar='PATH',
                        help='Save the histogram chart to PATH')
    parser.add_argument('--wait', action='store_true', help='Wait for the export to finish')
    parser.add_argument('--log-level', type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Console log level')
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    """Configuration from file, environment, then command line overrides."""
    config = PipelineConfig.from_file(args.config) if args.config else PipelineConfig()
    config.update_from_env()

    overrides = {
        'start_day': args.start_day,
        'end_day': args.end_day,
        'start_year': args.start_year,
        'end_year': args.end_year,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config.dates, name, value)

    if args.cloud_cover is not None:
        config.collection.max_cloud_cover = args.cloud_cover
    if args.analysis_scale is not None:
        config.analysis_scale = args.analysis_scale
    if args.export_scale is not None:
        config.export.scale = args.export_scale
    if args.export_root:
        config.export.output_root = args.export_root
    if args.save_map:
        config.display.save_path = args.save_map
    if args.save_histogram:
        config.display.histogram_path = args.save_histogram
    if args.log_level:
        config.log_level = args.log_level
    return config


def main(argv=None) -> int:
    setup_environment()
    args = parse_arguments(argv)

    try:
        config = build_config(args)
        config.check()
    except (OSError, ValueError, TypeError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(level=config.log_level, log_dir=config.log_dir)
    logger = get_logger("app")
    if config.display.cache_tiles:
        enable_tile_cache()

    print(f"\n{'='*50}")
    print("MEAN SURFACE TEMPERATURE")
    print(f"{'='*50}")
    print(f"Days:        {config.dates.start_day}-{config.dates.end_day}")
    print(f"Years:       {config.dates.start_year}-{config.dates.end_year}")
    print(f"Cloud cover: < {config.collection.max_cloud_cover}%")
    print(f"Export:      {config.export.output_root}/{config.export.folder}/{config.export.file_name_prefix}")
    print(f"{'='*50}\n")

    logger.info(f"Run started with export to {config.export.output_root}")
    result = run_pipeline(config, wait_for_export=args.wait)

    if not args.no_display:
        result.display.show()

    task = result.export_task
    if args.wait and task.state != TaskState.COMPLETED:
        logger.error(f"Export {task.id} ended in state {task.state.value}")
        print(f"Export failed: {task.status()['error_message']}", file=sys.stderr)
        return 1

    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
