#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from pathlib import Path

from .app import build_pipeline, ingest_corpus
from .config import load_config
from .errors import KBChatError
from .evaluate import evaluate, format_summary, load_gold
from .logging_utils import setup_logging

logger = logging.getLogger(__name__)


def _print_result(res, show_trace: bool) -> None:
    print("\n=== ANSWER ===")
    print(res.answer.strip())

    print("\n=== SOURCES ===")
    for s in res.sources:
        print(f"- {s.title} | {s.score:.3f} | {s.url or s.slug or s.parent_id}")
    print(f"\nrelevance: {res.relevance:.3f}")

    if show_trace:
        print("\n=== TRACE ===")
        print(json.dumps(res.trace, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kb-chat",
        description="Hybrid lexical + dense retrieval chat over a knowledge base.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    # Global logging flags
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr)."
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")
    parser.add_argument("--config", type=str, default="config.yaml")

    p_ing = sub.add_parser("ingest", help="Chunk, embed and index the corpus")
    p_ing.add_argument("--corpus", type=str, default=None, help="Corpus JSONL (overrides corpus.path)")
    p_ing.add_argument("--limit", type=int, default=None, help="Only ingest this many documents")
    p_ing.add_argument("--offset", type=int, default=0)

    p_q = sub.add_parser("query", help="Ask a question")
    p_q.add_argument("question", type=str, help="Your question string")
    p_q.add_argument("--json", action="store_true", help="Print the API response body as JSON")
    p_q.add_argument("--trace", action="store_true", help="Print the retrieval trace")

    p_s = sub.add_parser("serve", help="Run the HTTP API")
    p_s.add_argument("--host", default="127.0.0.1")
    p_s.add_argument("--port", type=int, default=8000)

    p_e = sub.add_parser("eval", help="Evaluate against a gold JSONL set")
    p_e.add_argument("--gold", required=True, help="Path to gold.jsonl")
    p_e.add_argument("--k", type=int, default=10, help="Cutoff for hit rate / MRR")
    p_e.add_argument("--tags", type=str, default="", help="Comma-separated tag filter (optional)")
    p_e.add_argument("--out", type=str, default=None, help="Write per-case results as JSON")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # ----- logging setup -----
    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        return 2
    if args.verbose:
        level = "DEBUG"
    elif args.quiet:
        level = "WARNING"
    else:
        level = None
    try:
        overrides = {"corpus": {"path": args.corpus}} if getattr(args, "corpus", None) else None
        cfg = load_config(args.config, overrides=overrides)
        setup_logging(level=level or cfg["app"]["log_level"], json_logs=args.log_json)
        logger.debug("CLI args parsed: %s", vars(args))

        if args.cmd == "serve":
            import uvicorn

            from .web.app import create_app

            uvicorn.run(create_app(cfg=cfg), host=args.host, port=args.port, log_config=None)
            return 0

        pipeline = build_pipeline(cfg)

        if args.cmd == "ingest":
            logger.info("Starting ingest: %s", cfg["corpus"]["path"])
            out = ingest_corpus(pipeline, limit=args.limit, offset=args.offset)
            logger.info("Ingest completed.")
            print(json.dumps(out))
            return 0

        if args.cmd == "query":
            res = pipeline.answer(args.question)
            if args.json:
                print(json.dumps({"success": True, "data": res.to_response()}, ensure_ascii=False, indent=2))
            else:
                _print_result(res, args.trace)
            return 0

        if args.cmd == "eval":
            gold = load_gold(Path(args.gold))
            if args.tags:
                tagset = set(t.strip().lower() for t in args.tags.split(",") if t.strip())
                gold = [g for g in gold if set((g.get("tags") or [])).intersection(tagset)]
            summary = evaluate(pipeline, gold, k=args.k)
            print(format_summary(summary))
            if args.out:
                Path(args.out).write_text(json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8")
            return 0
    except KBChatError as e:
        logger.error("%s failed: %s", args.cmd, e)
        return 1
    except Exception as e:
        logger.exception("%s failed: %s", args.cmd, e)
        return 2

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
