# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Command line entrypoint, for `agent-loop` or `python -m agent_loop`.
"""

import sys
import json
import logging
import asyncio
import argparse

from pathlib import Path
from dotenv import load_dotenv

from .config import DEFAULT_DB_PATH, InferenceSettings, LoopConfig, ProgressiveConfig
from .events import EventBus
from .llm.factory import create_inference_service
from .loop import AgentLoop, ProgressiveAgentLoop
from .storage import ConfigStore, LoopRepository
from .types.event_types import Event, EventType
from .types.errors import AgentLoopError

logger = logging.getLogger(__name__)

PROGRESS_EVENTS = {
    EventType.ITERATION_STARTED,
    EventType.PERSONAS_GENERATED,
    EventType.PERSONA_REJECTED,
    EventType.SIMULATION_COMPLETED,
    EventType.FEEDBACK_GENERATED,
    EventType.CONFIG_VERSION_CREATED,
    EventType.ITERATION_COMPLETED,
    EventType.LOOP_CONVERGED,
    EventType.LOOP_COMPLETED,
}


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-loop",
        description="Adaptive agent loop: simulate personas, collect feedback, optimize prompts",
    )
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH, help="SQLite database path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the standard agent loop")
    run_parser.add_argument("--max-iterations", type=int, default=10)
    run_parser.add_argument("--personas", type=int, default=3, help="Personas per iteration")
    run_parser.add_argument("--initial-criticality", type=float, default=4)
    run_parser.add_argument("--criticality-increment", type=float, default=1)
    run_parser.add_argument("--convergence-threshold", type=float, default=0.85)
    run_parser.add_argument("--questions", type=int, default=6, help="Questions per simulation")
    run_parser.add_argument("--concurrency", type=int, default=3)
    run_parser.add_argument("--seed", type=int, default=None)

    prog_parser = subparsers.add_parser("progressive", help="Run the progressive (banded) agent loop")
    prog_parser.add_argument("--max-iterations", type=int, default=15)
    prog_parser.add_argument("--min-iterations", type=int, default=5)
    prog_parser.add_argument("--target-satisfaction", type=float, default=9)
    prog_parser.add_argument("--target-recommendation-rate", type=float, default=90)
    prog_parser.add_argument("--questions", type=int, default=6, help="Questions per simulation")
    prog_parser.add_argument("--concurrency", type=int, default=3)
    prog_parser.add_argument("--seed", type=int, default=None)

    history_parser = subparsers.add_parser("history", help="Show the configuration history of a module")
    history_parser.add_argument("module")

    rollback_parser = subparsers.add_parser("rollback", help="Make an older configuration version current")
    rollback_parser.add_argument("module")
    rollback_parser.add_argument("version", type=int)

    return parser


def print_progress(event: Event) -> None:
    print(f"[{event.type.value}] {event.content}", file=sys.stderr)


async def run_loop(args: argparse.Namespace) -> dict:
    inference = create_inference_service(InferenceSettings.from_env())
    repository = LoopRepository(args.db)
    events = EventBus()
    for event_type in PROGRESS_EVENTS:
        events.subscribe(event_type, print_progress)

    if args.command == "run":
        config = LoopConfig(
            max_iterations=args.max_iterations,
            personas_per_iteration=args.personas,
            initial_criticality=args.initial_criticality,
            criticality_increment=args.criticality_increment,
            convergence_threshold=args.convergence_threshold,
            questions_per_simulation=args.questions,
            max_concurrency=args.concurrency,
            seed=args.seed,
        )
        summary = await AgentLoop(config, inference, repository, events=events).run()
        return summary.model_dump(mode="json", exclude={"iterations"})

    config = ProgressiveConfig(
        max_iterations=args.max_iterations,
        min_iterations=args.min_iterations,
        target_satisfaction=args.target_satisfaction,
        target_recommendation_rate=args.target_recommendation_rate,
        questions_per_simulation=args.questions,
        max_concurrency=args.concurrency,
        seed=args.seed,
    )
    summary = await ProgressiveAgentLoop(config, inference, repository, events=events).run()
    print(summary.report, file=sys.stderr)
    return summary.model_dump(mode="json", exclude={"iterations", "report"})


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = setup_parser()
    args = parser.parse_args(argv)

    logging.captureWarnings(True)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(filename)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        if args.command in ("run", "progressive"):
            result = asyncio.run(run_loop(args))
        elif args.command == "history":
            store = ConfigStore(LoopRepository(args.db))
            result = [v.model_dump(mode="json") for v in store.history(args.module)]
        else:
            store = ConfigStore(LoopRepository(args.db))
            result = store.rollback(args.module, args.version).model_dump(mode="json")
    except KeyError as e:
        logger.error(e)
        return 1
    except AgentLoopError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
