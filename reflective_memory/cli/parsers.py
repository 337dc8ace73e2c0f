from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Reflective memory (knowledge + reflection vector collections)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("health", help="Connect and report backend health for every configured collection")

    rm = sub.add_parser("remember", help="Classify facts (ADD/UPDATE/DELETE/NONE) and persist them")
    rm.add_argument("--text", action="append", default=[], help="A fact to process; can repeat")
    rm.add_argument("--file", help="Path to a file; each non-empty line becomes a fact")
    rm.add_argument("--session-id", default=None)
    rm.add_argument("--context", default="", help="Free-text context passed to the LLM classifier")
    rm.add_argument("--threshold", type=float, default=None, help="Similarity threshold override")
    rm.add_argument("--k", type=int, default=None, help="Number of similar memories to compare against")
    rm.add_argument("--no-llm", action="store_true", help="Use the heuristic classifier only")
    rm.add_argument("--no-delete", action="store_true", help="Downgrade DELETE decisions to NONE")

    rc = sub.add_parser("recall", help="Search stored memories")
    rc.add_argument("--q", required=True)
    rc.add_argument("--k", type=int, default=5)
    rc.add_argument("--score-threshold", type=float, default=None)
    rc.add_argument("--reflection", action="store_true", help="Also search the reflection collection")

    sr = sub.add_parser("store-reasoning", help="Store a reasoning trace with its evaluation")
    sr.add_argument("--trace", required=True, help="Path to a JSON file with {steps: [...], metadata?: {...}}")
    sr.add_argument("--evaluation", required=True, help="Path to a JSON file with {qualityScore, issues, suggestions}")
    sr.add_argument("--session-id", default=None)

    return ap
