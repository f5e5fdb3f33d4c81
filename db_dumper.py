from __future__ import annotations

import argparse
import json
import sys

from core.logging_utils import configure_json_logging
from core.settings import ConfigurationError, load_settings

from dbdump.errors import DumpError, exit_code_for
from dbdump.pipeline import DumpService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Dump the configured MySQL database, store it locally or on S3, and keep the newest copies",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="dotenv file to read (default: nearest .env from the current directory)",
    )
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return exit_code_for(exc)

    logger = configure_json_logging(settings.working_dir)
    logger.info("Starting dump run", extra={"settings": settings.describe()})
    try:
        summary = DumpService(settings).run()
    except DumpError as exc:
        logger.error("Dump run failed: %s", exc, extra={"error_type": type(exc).__name__})
        return exit_code_for(exc)

    for warning in summary.warnings + summary.retention.errors:
        logger.warning("%s", warning)
    print(json.dumps(summary.as_dict(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
