"""Run the fact retrievers once and store their facts.

Usage:
    uv run python -m scripts.run_retrievers                                   # All retrievers
    uv run python -m scripts.run_retrievers --retriever dependabotFactRetriever
"""

import argparse
import asyncio
import logging
import sys

from traffic_light.errors import DataUnavailableError
from traffic_light.facts.collect import collect_facts

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)


async def _run(retriever_ids: list[str] | None) -> bool:
    """Run retrievers and return True if all of them completed."""
    counts = await collect_facts(retriever_ids)
    for retriever_id, stored in counts.items():
        outcome = "failed" if stored < 0 else f"{stored} facts stored"
        print(f"{retriever_id}: {outcome}")
    return all(stored >= 0 for stored in counts.values())


def main() -> None:
    """Parse args and run retrievers."""
    parser = argparse.ArgumentParser(description="Run traffic-light fact retrievers once")
    parser.add_argument(
        "--retriever",
        type=str,
        action="append",
        dest="retrievers",
        help="Retriever id to run (repeatable). Default: all retrievers.",
    )
    args = parser.parse_args()

    try:
        ok = asyncio.run(_run(args.retrievers))
    except (DataUnavailableError, ValueError) as e:
        print(f"Failed to run retrievers: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
