"""CLI entrypoint for transcript-to-content generation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from core import AI_TASKS, merge_generation_profile, resolve_generation_profile
from generation.routing import RoutingTable
from orchestrator import GenerationEngine
from processing import parse_srt_file
from storage import get_diagnostics_sink
from utils import AuthorityEngineError, configure_package_logging


def _json(text: str):
    raw = str(text or "").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _tasks(text: str):
    names = [item.strip().lower() for item in str(text or "").split(",") if item.strip()]
    unknown = [name for name in names if name not in AI_TASKS]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown task(s): {', '.join(unknown)}")
    return names or list(AI_TASKS)


async def _generate(args: argparse.Namespace) -> dict:
    transcript = parse_srt_file(args.srt, language=args.language)
    sink = get_diagnostics_sink(args.diagnostics) if args.diagnostics else None
    engine = GenerationEngine.from_settings(sink=sink)

    profile = resolve_generation_profile(_json(args.profile_json))
    if args.quality_mode:
        profile = merge_generation_profile(profile, {"quality": {"mode": args.quality_mode}})

    try:
        run = await engine.run_all(
            transcript.segments,
            profile,
            duration_sec=transcript.duration_sec,
            asset_id=args.asset_id or None,
            tasks=args.tasks,
        )
    finally:
        await engine.requester.client.aclose()

    result = {"asset_id": run.asset_id, "duration_sec": run.duration_sec, "outputs": run.outputs}
    if args.with_diagnostics and engine.sink is not None:
        result["diagnostics"] = [
            entry.model_dump(mode="json") for entry in engine.sink.entries(run.asset_id)
        ]
    return result


def main() -> None:
    parser = argparse.ArgumentParser(description="Authority content engine CLI")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate")
    gen.add_argument("--srt", required=True, help="SRT or timeline TXT file")
    gen.add_argument("--tasks", type=_tasks, default=list(AI_TASKS))
    gen.add_argument("--quality-mode", choices=["standard", "max"], default="")
    gen.add_argument("--profile-json", default="{}")
    gen.add_argument("--language", default="pt-BR")
    gen.add_argument("--asset-id", default="")
    gen.add_argument("--diagnostics", default="", help="JSONL file for diagnostics records")
    gen.add_argument("--with-diagnostics", action="store_true")

    sub.add_parser("routes")

    args = parser.parse_args()
    configure_package_logging(getattr(logging, str(args.log_level).upper(), logging.INFO))

    if args.command == "routes":
        print(json.dumps(RoutingTable.from_settings().snapshot(), ensure_ascii=False, indent=2))
        return

    if args.command == "generate":
        try:
            result = asyncio.run(_generate(args))
        except AuthorityEngineError as e:
            print(json.dumps({"error": str(e)}, ensure_ascii=False))
            raise SystemExit(1)
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return


if __name__ == "__main__":
    main()
