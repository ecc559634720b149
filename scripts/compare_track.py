#!/usr/bin/env python3
"""Analyze a track locally and compare it with a reference feature record.

The reference is a flat JSON object such as a streaming service's audio
features response: {"tempo": 120.0, "key": 0, "loudness": -5.2,
"energy": 0.8, "danceability": 0.7}. Extra keys are ignored.

Usage:
    python scripts/compare_track.py song.mp3
    python scripts/compare_track.py song.mp3 --reference features.json
    python scripts/compare_track.py https://example.com/preview.mp3 --json
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

logging.basicConfig(level=logging.WARNING, format="%(name)s %(levelname)s: %(message)s")
for _name in ("numba", "PySoundFile"):
    logging.getLogger(_name).setLevel(logging.ERROR)

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from trackdiff.analysis.engine import AnalysisEngine
from trackdiff.analysis.models import ComparisonReport, LocalSummary


def _fmt(value: float | None, digits: int = 2) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


def print_summary(summary: LocalSummary) -> None:
    print("Local analysis")
    print(f"  BPM:              {summary.bpm:.1f}")
    print(f"  Loudness (mean):  {summary.loudness:.2f} dBFS")
    print(f"  Energy (RMS):     {summary.rms:.3f}")
    print(f"  Key:              {summary.key.value}")


def print_report(report: ComparisonReport) -> None:
    print(f"{'feature':<14}{'local':>10}{'reference':>12}{'diff':>10}  match")
    for e in report.entries:
        mark = "yes" if e.matches else ("n/a" if not e.comparable else "no")
        print(f"{e.feature:<14}{_fmt(e.local):>10}{_fmt(e.reference):>12}{_fmt(e.abs_diff):>10}  {mark}")
    if report.tempo_class is not None:
        print(f"\nTempo: {report.tempo_class} (diff {report.tempo_diff:.1f} BPM)")


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("source", help="Audio file path or preview URL")
    parser.add_argument("--reference", type=Path, help="JSON file with reference features")
    parser.add_argument("--frame-size", type=int, default=None, help="Samples per analysis frame")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger("trackdiff").setLevel(logging.INFO)

    reference = None
    if args.reference:
        reference = json.loads(args.reference.read_text(encoding="utf-8"))

    engine = AnalysisEngine(frame_size=args.frame_size)
    outcome = engine.analyze_file(args.source)
    if not outcome.ok:
        print(f"Analysis failed: {outcome.error}", file=sys.stderr)
        sys.exit(1)

    reconciled = outcome.reconcile(reference)
    if args.json:
        print(json.dumps({
            "local": asdict(outcome.result),
            "reconciliation": asdict(reconciled),
        }, indent=2, default=str))
    elif isinstance(reconciled, LocalSummary):
        print_summary(reconciled)
    else:
        print_summary(outcome.result)
        print()
        print_report(reconciled)


if __name__ == "__main__":
    main()
