"""Command line entry point for the search collector.

Loads the reader configuration, sets up logging and runs one collection,
relaying its results to Argus or printing them in preview mode.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .core.collector import Collector
from .core.config import CollectorConfig
from .core.exceptions import CollectorError
from .core.logging_config import LoggingConfigurator
from .datasources import ReaderFactory, READERS, available_readers
from .utils.stats import RelayStatistics
from .writer import WriterFactory


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""

    parser = argparse.ArgumentParser(
        prog='search-collector',
        description='Collects metrics and annotations from search results and submits them to Argus',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available types: {', '.join(available_readers())}

Examples:
  # Collect metrics from Splunk and submit them to Argus
  search-collector -t SPLUNKNATIVE --config splunk.properties \\
                   --argus-endpoint https://argus.example.com:443/argusws --argus-username robot

  # Print what would be submitted, overriding the query timeout
  search-collector -t SPLUNKNATIVE --config splunk.yaml -D timeout_sec=120 -n
        """
    )

    parser.add_argument('-t', '--type', type=str, default=None,
                        help='Reader type to run')
    parser.add_argument('-s', '--timeout', type=int, default=3600,
                        help='Seconds the whole collection may take (default: 3600)')
    parser.add_argument('-n', '--preview', action='store_true',
                        help='Print results as JSON instead of submitting them')

    # Reader configuration
    config_group = parser.add_argument_group('Reader Configuration')
    config_group.add_argument('--config', type=str, default=None,
                              help='Reader configuration file (.properties, .yaml or .json). '
                                   'Defaults to the <TYPE>_CONFIGURATION environment variable')
    config_group.add_argument('--override-config', type=str, default=None,
                              help='Optional file whose values override the configuration file. '
                                   'Defaults to <TYPE>_OVERRIDE_CONFIGURATION')
    config_group.add_argument('-D', dest='property', action='append', default=[], metavar='KEY=VALUE',
                              help='Override a single configuration value. May be repeated')

    # Argus specific options
    argus_group = parser.add_argument_group('Argus Configuration')
    argus_group.add_argument('--argus-endpoint', type=str, default=None,
                             help='Argus web services URL with explicit port. Defaults to ARGUSWS_ENDPOINT')
    argus_group.add_argument('--argus-username', type=str, default=None,
                             help='Argus user name. Defaults to ARGUSWS_USERNAME')
    argus_group.add_argument('--argus-password', type=str, default=None,
                             help='Argus password. Defaults to ARGUSWS_PASSWORD')

    # Prometheus specific options
    prometheus_group = parser.add_argument_group('Prometheus Configuration')
    prometheus_group.add_argument('--prometheus-port', type=int, default=None,
                                  help='Expose run statistics on this port (default: disabled)')

    # Debugging
    debug_group = parser.add_argument_group('Debugging')
    debug_group.add_argument('-l', '--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                             default='INFO', help='Set logging level (default: INFO)')
    debug_group.add_argument('--logfile', type=str, default=None,
                             help='Path to log file (default: stdout only)')

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""

    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.type:
        parser.print_help()
        return
    if args.type.upper() not in READERS:
        parser.error(f"Unknown type {args.type}. Available types: {', '.join(available_readers())}")

    try:
        config = CollectorConfig.from_args(args)
    except CollectorError as e:
        parser.error(str(e))

    LoggingConfigurator.setup_logging(log_level=config.log_level, log_file=config.logfile)

    logging.info("=== Search Collector Startup ===")
    for key, value in config.to_dict().items():
        logging.info(f"{key}: {value}")
    logging.info("=== Configuration Complete ===")

    statistics = RelayStatistics()
    try:
        if config.prometheus_port:
            statistics.serve(config.prometheus_port)

        reader = ReaderFactory.create_reader(config, statistics)
        writer = WriterFactory.create_writer_from_config(config)
        collector = Collector(reader, writer, timeout_sec=config.timeout_sec, statistics=statistics)
        collector.invoke()

        logging.info(f"Run statistics: {statistics.summary()}")

    except KeyboardInterrupt:
        logging.info("Received interrupt, shutting down...")
    except (CollectorError, OSError) as e:
        logging.error(f"Collector error: {e}")
        if config.log_level == 'DEBUG':
            raise
        sys.exit(1)


if __name__ == '__main__':
    main()
