#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import replace
from typing import Optional

import pandas as pd
from dotenv import load_dotenv

from mindsplit.config import CHUNK_METHODS, PROVIDERS, SplitConfig
from mindsplit.core.orchestrator import BleedingReport, Orchestrator, SplitResult
from mindsplit.utils import configure_logging, ensure_dir, write_json, write_jsonl


def read_input(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def chunk_table(result: SplitResult) -> pd.DataFrame:
    rows = [
        {
            "id": c.id,
            "order": c.order,
            "text": c.text,
            "workstream": ws.index,
            "workstream_name": ws.name,
        }
        for ws in result.workstreams
        for c in ws.chunks
    ]
    df = pd.DataFrame(rows, columns=["id", "order", "text", "workstream", "workstream_name"])
    return df.sort_values("order").reset_index(drop=True)


def print_report(report: BleedingReport) -> None:
    print(f"Bleeding report for session {report.session_id} (n={report.n})")
    print(f"Total cut weight: {report.total_cut_weight:.4f} over {len(report.edges)} edge(s)")
    for (a, b), edges in report.connections().items():
        weight = sum(e.weight for e in edges)
        print(f"  [{a}] {report.workstream_names[a]} <-> [{b}] {report.workstream_names[b]}: {len(edges)} edge(s), weight {weight:.4f}")
        for e in edges:
            print(f"    {e.weight:.3f}  {e.u_text!r}  ~  {e.v_text!r}")


def run(
    input_path: str,
    n: int,
    output_dir: str = "./out",
    session_id: Optional[str] = None,
    report: bool = False,
    config: Optional[SplitConfig] = None,
) -> SplitResult:
    cfg = config or SplitConfig.from_env()
    ensure_dir(output_dir)

    logging.info("Reading input %s", input_path)
    text = read_input(input_path)

    orch = Orchestrator.from_config(cfg)
    if session_id:
        logging.info("Appending to session %s (provider=%s)", session_id, cfg.provider)
        result = orch.add_and_resplit(session_id, text, n)
    else:
        logging.info("New session (provider=%s, method=%s)", cfg.provider, cfg.chunk_method)
        result = orch.split(text, n)

    df = chunk_table(result)
    out_jsonl = os.path.join(output_dir, "chunks_with_workstreams.jsonl")
    out_ws = os.path.join(output_dir, "workstreams.json")

    logging.info("Writing %s", out_jsonl)
    write_jsonl(out_jsonl, df.to_dict(orient="records"))
    logging.info("Writing %s", out_ws)
    write_json(out_ws, result.to_dict())

    if report:
        print_report(orch.get_bleeding_report(result.session_id, n))

    logging.info(
        "Done. session=%s | chunks: %d | workstreams: %d | cut weight: %.4f",
        result.session_id,
        result.stats["chunk_count"],
        len(result.workstreams),
        result.total_cut_weight,
    )
    return result


def parse_args(argv=None) -> argparse.Namespace:
    input_path = os.getenv("INPUT", "./notes.txt")
    output_dir = os.getenv("OUTPUT", "./out")
    n = int(os.getenv("WORKSTREAMS", "3"))

    p = argparse.ArgumentParser(
        description="Split notes into independent workstreams",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--input", default=input_path, help="text file to split")
    p.add_argument("-n", "--workstreams", dest="n", type=int, default=n, help="number of workstreams")
    p.add_argument("--session", default=None, help="append to an existing session instead of starting one")
    p.add_argument("--output", default=output_dir, help="output directory")
    p.add_argument("--report", action="store_true", help="print the bleeding-edge report")
    p.add_argument("--provider", default=None, choices=list(PROVIDERS), help="embedding provider (env MINDSPLIT_PROVIDER)")
    p.add_argument("--method", default=None, choices=list(CHUNK_METHODS), help="chunking method (env MINDSPLIT_CHUNK_METHOD)")
    p.add_argument("--seed", type=int, default=None, help="partition seed (env MINDSPLIT_SEED)")
    p.add_argument("--log_level", default="INFO", help="DEBUG/INFO/WARN/ERROR")
    return p.parse_args(argv)


def main(argv=None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level)

    cfg = SplitConfig.from_env()
    overrides = {}
    if args.provider:
        overrides["provider"] = args.provider
    if args.method:
        overrides["chunk_method"] = args.method
    if args.seed is not None:
        overrides["seed"] = args.seed
    if overrides:
        cfg = replace(cfg, **overrides)
        cfg.validate()

    run(
        input_path=args.input,
        n=args.n,
        output_dir=args.output,
        session_id=args.session,
        report=args.report,
        config=cfg,
    )


if __name__ == "__main__":
    main()
