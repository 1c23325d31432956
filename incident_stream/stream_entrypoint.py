"""Stream entrypoint - print incidents from the 365 Defender API as JSON lines.

Usage:
    python -m incident_stream.stream_entrypoint
    python -m incident_stream.stream_entrypoint --demand 50
    python -m incident_stream.stream_entrypoint --from-timestamp 2024-01-01T00:00:00Z
"""

import argparse
import asyncio
import signal
import sys

from incident_stream.core.config import settings
from incident_stream.core.exceptions import ConfigurationError
from incident_stream.core.logging import get_logger
from incident_stream.schemas.incident import IncidentRecord
from incident_stream.services.stream import build_pipeline, consume

logger = get_logger("stream_entrypoint")


def print_incident(record: IncidentRecord) -> None:
    print(record.model_dump_json(by_alias=True), flush=True)


async def run_stream(demand: int, from_timestamp: str | None) -> dict:
    overrides = {"from_timestamp": from_timestamp} if from_timestamp else {}
    stream = build_pipeline(settings.pipeline_options(**overrides))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stream.drain)

    try:
        return await consume(stream, print_incident, demand=demand)
    finally:
        await stream.aclose()


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--demand", type=int, default=settings.STREAM_DEMAND, help="Records to keep requested")
    parser.add_argument("--from-timestamp", default=None, help="Initial watermark (ISO-8601)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> dict:
    """Main entry point for the incident stream."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.demand < 1:
        logger.error("--demand must be at least 1")
        sys.exit(2)

    logger.info("Incident stream starting...")
    try:
        result = asyncio.run(run_stream(args.demand, args.from_timestamp))
    except ConfigurationError as exc:
        logger.error(str(exc))
        sys.exit(1)

    logger.info(f"Incident stream stopped: {result}")
    return result


if __name__ == "__main__":
    main()
