#!/usr/bin/env python3
"""Clay Stages - watch a sculpture emerge from a lump of clay.

Usage:
    python main.py run --prompt "a galloping horse"
    python main.py run --image photo.jpg --out exports
    python main.py run --prompt "an owl" --image owl.png --verbose
    python main.py stages
"""

import argparse
import logging
import os
import sys

from core.orchestrator import Orchestrator, RunRejected
from core.state import INITIAL_STAGES, PipelineState, StageStatus
from utils.folder_naming import get_output_dir, stage_filename
from utils.imagegen import GeminiImageGenerator, load_image, save_artifact
from utils.log import configure_logging

_MARKERS = {
    StageStatus.IDLE: "....",
    StageStatus.LOADING: "WAIT",
    StageStatus.SUCCESS: " OK ",
    StageStatus.ERROR: "FAIL",
}


def _format_stage(stage):
    line = f"  [{_MARKERS[stage.status]}] {stage.rank}/4 {stage.label}"
    if stage.status == StageStatus.ERROR and stage.error:
        line += f" - {stage.error}"
    return line


def _print_progress(stage):
    # Loading transitions are implied by the reset banner.
    if stage.status in (StageStatus.SUCCESS, StageStatus.ERROR):
        print(_format_stage(stage), flush=True)


def export_stages(stages, out_dir):
    """Write each successful stage image into out_dir. Returns the paths written."""
    written = []
    for stage in stages:
        if stage.status != StageStatus.SUCCESS or stage.artifact is None:
            continue
        path = os.path.join(out_dir, stage_filename(stage.rank, stage.artifact.mime_type))
        written.append(save_artifact(stage.artifact, path))
    return written


def cmd_run(args):
    """Generate the four stages and print each as it settles."""
    reference = None
    if args.image:
        try:
            reference = load_image(args.image)
        except (OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    state = PipelineState()
    state.subscribe(_print_progress)
    orchestrator = Orchestrator(state, GeminiImageGenerator(model=args.model))

    print("Sculpting...")
    try:
        stages = orchestrator.run(args.prompt, reference)
    except RunRejected as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("\nStages:")
    for stage in stages:
        print(_format_stage(stage))

    if args.out:
        out_dir = get_output_dir(args.out, args.prompt or "")
        written = export_stages(stages, out_dir)
        if not written:
            print("\nNo stage succeeded, nothing exported.")
            return 0
        print(f"\nWrote {len(written)} image(s) to {out_dir}")
        for path in written:
            print(f"  {os.path.basename(path)}")
    return 0


def cmd_stages(args):
    print("Stages:")
    for stage in INITIAL_STAGES:
        role = "anchor" if stage.is_anchor else "derived from stage 4"
        print(f"  {stage.rank}. {stage.label:14s} - {stage.description} ({role})")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="claystages",
        description="Generate the four stages of a clay sculpture",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Generate all four stages")
    run_parser.add_argument("--prompt", default="", help="What to sculpt")
    run_parser.add_argument("--image", help="Reference image for the final work")
    run_parser.add_argument("--out", help="Export successful stages under this directory")
    run_parser.add_argument("--model", help="Override the image model")
    run_parser.add_argument("--verbose", action="store_true",
                            help="Log each generation request")

    subparsers.add_parser("stages", help="List the four stages")

    args = parser.parse_args(argv)

    if args.command == "run":
        configure_logging(logging.INFO if args.verbose else logging.WARNING)
        return cmd_run(args)
    if args.command == "stages":
        return cmd_stages(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
