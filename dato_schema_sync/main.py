#!/usr/bin/env python3
"""
DatoCMS Schema Sync - Main Entry Point

Builds DatoCMS blocks and models from Python definition modules. Each file
under the blocks/models directories defines one item type through a single
entry point function receiving a build context:

    from dato_schema_sync import ItemTypeDefinition

    def build(ctx):
        return (
            ItemTypeDefinition.model("Article")
            .add_string("Title", validators={"required": {}})
            .add_link("Author", item_types=[ctx.resolve_model("Author")])
        )

Usage:
    python -m dato_schema_sync build [options]

Environment Variables:
    DATOCMS_API_TOKEN    - CMA API token
    DATOCMS_ENVIRONMENT  - Sandbox environment (optional)
    BUILD_BLOCKS_PATH    - Directory of block definitions
    BUILD_MODELS_PATH    - Directory of model definitions
"""

import argparse
import sys
import logging
from typing import List, Optional

from .config import Config, setup_logging
from .build import BuildRunner
from .exceptions import ApiError, ConfigurationError
from .utils import DatoClient

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='dato-schema-sync',
        description='Synchronize DatoCMS blocks and models from definition modules',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    # Config file option
    parser.add_argument('-c', '--config', help='Path to config file (YAML/JSON)')

    # Connection options
    parser.add_argument('--api-token', help='DatoCMS CMA API token')
    parser.add_argument('-e', '--environment', help='DatoCMS environment to build against')

    # Logging options
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose (DEBUG) logging')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Only log errors')
    parser.add_argument('--log-file', help='Write logs to file')

    subparsers = parser.add_subparsers(dest='command', required=True)
    build = subparsers.add_parser('build', help='Build DatoCMS blocks and models')
    build.add_argument('--blocks-path', help='Directory containing block definitions')
    build.add_argument('--models-path', help='Directory containing model definitions')
    build.add_argument('-n', '--no-cache', action='store_true',
                       help='Ignore the build cache for this run')
    build.add_argument('--skip-deletion', action='store_true',
                       help='Never delete item types or fields that lost their definitions')
    build.add_argument('--skip-deletion-confirmation', action='store_true',
                       help='Delete orphaned item types without asking')
    concurrency = build.add_mutually_exclusive_group()
    concurrency.add_argument('--concurrency', type=int,
                             help='Number of modules built in parallel (default: 3)')
    concurrency.add_argument('--auto-concurrency', action='store_true',
                             help='Size the worker pool from the number of CPU cores')

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration and apply command line overrides."""
    if args.config:
        config = Config.from_file(args.config)
    else:
        config = Config.from_env()

    if args.api_token:
        config.dato.api_token = args.api_token
    if args.environment:
        config.dato.environment = args.environment
    if args.blocks_path:
        config.build.blocks_path = args.blocks_path
    if args.models_path:
        config.build.models_path = args.models_path
    if args.no_cache:
        config.build.no_cache = True
    if args.skip_deletion:
        config.build.skip_deletion = True
    if args.skip_deletion_confirmation:
        config.build.skip_deletion_confirmation = True
    if args.concurrency is not None:
        config.build.concurrency = args.concurrency
        config.build.auto_concurrency = False
    if args.auto_concurrency:
        config.build.auto_concurrency = True

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    log_level = 'DEBUG' if args.verbose else 'ERROR' if args.quiet else 'INFO'
    setup_logging(level=log_level, log_file=args.log_file)

    logger.info("DatoCMS Schema Sync starting...")

    config = load_config(args)

    # Validate configuration
    if not config.validate():
        logger.error("Invalid configuration. Please check settings.")
        return 1

    client = DatoClient.from_settings(config.dato)
    runner = BuildRunner(config, client)
    try:
        report = runner.run()

        # Print summary
        print("\n" + report.summary())

        return report.exit_code

    except ConfigurationError as e:
        logger.error(f"Build aborted: {e}")
        return 1
    except KeyboardInterrupt:
        if runner.orchestrator is not None:
            runner.orchestrator.cancel()
        logger.info("Build interrupted by user")
        return 130
    except ApiError as e:
        logger.error(f"Build failed: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Build failed with error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
