"""
Command-line entry point for the prerender crawler.
"""

import sys
import json
import argparse
import asyncio
from typing import Any, Dict, List, Optional
from pathlib import Path

from config import ConfigManager, CrawlConfig
from prerender_crawler.concurrent.controller import RunCoordinator
from prerender_crawler.data.models import LogRecord, run_result_to_dicts
from prerender_crawler.utils.errors import (
    ConfigurationError,
    PrerenderCrawlerError,
    RunAborted,
    handle_error,
)
from prerender_crawler.utils.logging import get_logger, setup_logging


logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command-line interface parser."""
    parser = argparse.ArgumentParser(
        prog='prerender-crawl',
        description='Prerender Crawler - crawl a locally served single-page app with a headless browser',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --port 45678                          # Crawl http://localhost:45678 from /
  %(prog)s --config crawl.json                   # Use custom configuration file
  %(prog)s --base-path http://localhost:3000 --include / --include /about
  %(prog)s --port 45678 --no-crawl -o json       # Only fetch the include paths
  %(prog)s --port 45678 --exclude '^/admin'      # Skip admin routes
        """
    )

    # Configuration options
    parser.add_argument(
        '--config', '-c',
        type=str,
        default='crawl.json',
        help='Path to configuration file (default: crawl.json)'
    )

    # Target options
    parser.add_argument(
        '--base-path',
        type=str,
        help='Origin of the served app, e.g. http://localhost:45678'
    )

    parser.add_argument(
        '--port',
        type=int,
        help='Port of the served app (base path defaults to http://localhost:PORT)'
    )

    parser.add_argument(
        '--include',
        type=str,
        action='append',
        help='Path to start crawling from (can be used multiple times)'
    )

    parser.add_argument(
        '--exclude',
        type=str,
        action='append',
        help='Regular expression of paths never to crawl (can be used multiple times)'
    )

    # Crawl behaviour
    parser.add_argument(
        '--concurrency',
        type=int,
        help='Number of pages fetched at the same time'
    )

    parser.add_argument(
        '--no-crawl',
        action='store_true',
        help='Fetch only the include paths without following links'
    )

    parser.add_argument(
        '--ignore-page-errors',
        action='store_true',
        help='Keep crawling when a page throws'
    )

    parser.add_argument(
        '--skip-third-party-requests',
        action='store_true',
        help='Abort requests that leave the base path'
    )

    parser.add_argument(
        '--user-agent',
        type=str,
        help='User agent sent by the browser'
    )

    parser.add_argument(
        '--wait-for',
        type=int,
        help='Milliseconds to wait after each page has loaded'
    )

    # Output options
    parser.add_argument(
        '--output', '-o',
        type=str,
        choices=['json', 'text'],
        default='text',
        help='Output format for the crawl result (default: text)'
    )

    parser.add_argument(
        '--output-file',
        type=str,
        help='Write the crawl result to this file instead of stdout'
    )

    # Logging options
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override log level from configuration'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output (equivalent to --log-level DEBUG)'
    )

    return parser


def format_output(data: Any, format_type: str) -> str:
    """Format output data according to specified format."""
    if format_type == 'json':
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.append(f"{key}:")
                for sub_key, sub_value in value.items():
                    lines.append(f"  {sub_key}: {sub_value}")
            elif isinstance(value, list):
                lines.append(f"{key}: {', '.join(map(str, value))}")
            else:
                lines.append(f"{key}: {value}")
        return '\n'.join(lines)
    elif isinstance(data, list):
        return '\n'.join(map(str, data))
    else:
        return str(data)


def summarize(records: List[LogRecord]) -> Dict[str, Any]:
    """Text summary of a run: one line per page with its log count."""
    pages = {record.url: f"{len(record.entries)} log entries" for record in records}
    return {
        'pages': len(records),
        'with_logs': sum(1 for record in records if record.entries),
        'results': pages,
    }


def apply_cli_overrides(config_data: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """
    Merge command-line flags over file-format configuration data.

    Args:
        config_data: Configuration in the file format (camelCase keys)
        args: Parsed command-line arguments

    Returns:
        The updated configuration data
    """
    options = config_data.setdefault('options', {})

    if args.base_path:
        config_data['basePath'] = args.base_path
    if args.port is not None:
        options['port'] = args.port
    if args.include:
        options['include'] = args.include
    if args.exclude:
        options['exclude'] = options.get('exclude', []) + args.exclude
    if args.concurrency is not None:
        options['concurrency'] = args.concurrency
    if args.no_crawl:
        options['crawl'] = False
    if args.ignore_page_errors:
        options['ignorePageErrors'] = True
    if args.skip_third_party_requests:
        options['skipThirdPartyRequests'] = True
    if args.user_agent:
        options['userAgent'] = args.user_agent
    if args.wait_for is not None:
        options['waitFor'] = args.wait_for

    if args.verbose:
        config_data['logLevel'] = 'DEBUG'
    elif args.log_level:
        config_data['logLevel'] = args.log_level

    return config_data


def load_cli_config(args: argparse.Namespace) -> CrawlConfig:
    """
    Build the crawl configuration from file, environment and flags.

    The configuration file is optional when the base path or port is given
    on the command line.

    Raises:
        ConfigurationError: If the merged configuration is invalid
    """
    manager = ConfigManager(args.config)
    return manager.load_config(overrides=lambda data: apply_cli_overrides(data, args))


def write_output(text: str, output_file: Optional[str]) -> None:
    """Print ``text`` or write it to ``output_file``."""
    if not output_file:
        print(text)
        return

    path = Path(output_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + '\n', encoding='utf-8')
    logger.info(f"Crawl result written to {path}")


def run_crawl(config: CrawlConfig, args: argparse.Namespace) -> int:
    """Run one crawl and report its result; returns the exit code."""
    try:
        records = asyncio.run(RunCoordinator(config).run())
    except RunAborted as e:
        logger.error(f"{e.message}: {format_output(e.details, 'text')}")
        print(format_output({'error': e.message, **e.details}, args.output), file=sys.stderr)
        return EXIT_FAILED

    if args.output == 'json':
        data = run_result_to_dicts(records)
    else:
        data = summarize(records)
    write_output(format_output(data, args.output), args.output_file)
    return EXIT_OK


def main(argv: Optional[List[str]] = None):
    """Main entry point with command-line interface."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)

    exit_code = EXIT_OK

    try:
        config = load_cli_config(args)
        setup_logging(config.log_level, config.log_file)
        exit_code = run_crawl(config, args)

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        exit_code = EXIT_INTERRUPTED
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message} {e.details or ''}".rstrip())
        print(format_output({'error': e.message, **e.details}, args.output), file=sys.stderr)
        exit_code = EXIT_FAILED
    except PrerenderCrawlerError as e:
        handle_error(e, logger, {"operation": "crawl"}, reraise=False)
        exit_code = EXIT_FAILED
    except Exception as e:
        handle_error(e, logger, {"operation": "crawl"}, reraise=False)
        exit_code = EXIT_FAILED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
