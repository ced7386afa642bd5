"""Entrypoint: check provider health, grade an answer or request a hint."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from mentor_llm.config import load_settings
from mentor_llm.evaluator import AnswerEvaluator, EvaluationRequest
from mentor_llm.hints import HintGenerator
from mentor_llm.llm.router import LLMClient
from mentor_llm.logging_config import configure_logging
from mentor_llm.utils import json_dumps


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LLM grading and mentoring core")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("health", help="Check whether the configured provider is reachable (default)")

    evaluate = subparsers.add_parser("evaluate", help="Grade one answer to a code-reading question")
    evaluate.add_argument("--code-file", required=True, help="File containing the exercise code")
    evaluate.add_argument("--question", required=True)
    evaluate.add_argument("--ideal-point", action="append", default=[], dest="ideal_points")
    evaluate.add_argument("--answer", required=True)

    hint = subparsers.add_parser("hint", help="Generate a hint for a question")
    hint.add_argument("--code-file", required=True)
    hint.add_argument("--question", required=True)
    hint.add_argument("--goal", action="append", default=[], dest="goals")
    return parser


async def _run(args: argparse.Namespace, client: LLMClient, max_input_length: int) -> int:
    command = args.command or "health"

    if command == "health":
        healthy = await client.check_health()
        print(f"provider={client.selector.preferred.value} healthy={healthy}")
        return 0 if healthy else 1

    code = Path(args.code_file).read_text(encoding="utf-8")

    if command == "evaluate":
        evaluator = AnswerEvaluator(client, max_input_length=max_input_length)
        result = await evaluator.evaluate_answer(
            EvaluationRequest(
                code=code,
                question=args.question,
                ideal_points=args.ideal_points,
                user_answer=args.answer,
            )
        )
        print(json_dumps(result.to_dict()))
        return 0

    hints = HintGenerator(client, max_input_length=max_input_length)
    hint = await hints.generate_hint(code, args.question, args.goals)
    print(hint)
    return 0


def main() -> None:
    load_dotenv()
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()

    settings = load_settings(args.settings)
    client = LLMClient.from_settings(settings)
    exit_code = asyncio.run(_run(args, client, int(settings["sanitizer"]["max_input_length"])))
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
