"""
Command-line entry point for the Weather Alert service.

    weather-alerts serve --port 8080
    weather-alerts fetch-weather
    weather-alerts test-email --to someone@example.com
    weather-alerts init-db
    weather-alerts list-jobs
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import Settings
from .context import AppContext, build_context
from .errors import ConfigError, WeatherAlertError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="weather-alerts",
        description="Weather Alert System - scheduled weather fetch and email alerts"
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Start the web server with the scheduler")
    serve.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    serve.add_argument("-p", "--port", type=int, default=8080, help="Port to listen on")

    subparsers.add_parser("fetch-weather", help="Fetch weather for all users once and send alerts")

    test_email = subparsers.add_parser("test-email", help="Send a test email")
    test_email.add_argument("-t", "--to", required=True, help="Recipient address")

    subparsers.add_parser("init-db", help="Initialize the database schema")
    subparsers.add_parser("list-jobs", help="List scheduled jobs")

    return parser


def cmd_serve(context: AppContext, args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    uvicorn.run(create_app(context), host=args.host, port=args.port, log_config=None)
    return EXIT_OK


def cmd_fetch_weather(context: AppContext, args: argparse.Namespace) -> int:
    logger.info("Manually fetching weather...")
    result = context.pipeline.run_cycle()

    print(f"Cities processed: {result.cities_processed}")
    print(f"Readings stored:  {result.readings_stored}")
    print(f"Alerts sent:      {result.alerts_sent}")
    print(f"Alerts failed:    {result.alerts_failed}")
    for city, error in result.errors.items():
        print(f"  error [{city}]: {error}")
    return EXIT_OK


def cmd_test_email(context: AppContext, args: argparse.Namespace) -> int:
    logger.info(f"Sending test email to {args.to}")
    context.email_client.send_test(args.to)
    print(f"Test email sent to {args.to}")
    return EXIT_OK


def cmd_init_db(context: AppContext, args: argparse.Namespace) -> int:
    context.database.init_schema()
    print("Database schema created")
    return EXIT_OK


def cmd_list_jobs(context: AppContext, args: argparse.Namespace) -> int:
    print("Scheduled jobs:")
    for job in context.scheduler.describe_jobs():
        print(f"  {job['id']}: {job['name']} ({job['trigger']})")
    print("\nManual commands:")
    print("  weather-alerts fetch-weather    (fetch weather and send alerts now)")
    print("  weather-alerts init-db          (initialize database)")
    print("  weather-alerts test-email --to  (send a test email)")
    return EXIT_OK


COMMANDS = {
    "serve": cmd_serve,
    "fetch-weather": cmd_fetch_weather,
    "test-email": cmd_test_email,
    "init-db": cmd_init_db,
    "list-jobs": cmd_list_jobs,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command is None:
        args = build_parser().parse_args(["serve"])

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT)
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    try:
        context = build_context(settings)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG
    except WeatherAlertError as e:
        logger.error(f"Startup failed: {e}")
        return EXIT_FAILURE

    try:
        return COMMANDS[args.command](context, args)
    except WeatherAlertError as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_FAILURE
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
