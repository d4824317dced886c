from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from reindex.config import Settings, load_settings
from reindex.domain.errors import ReindexError, UnrecoverableErrorsError
from reindex.engine import Reindexer, RunnerConfig, converge
from reindex.engine.plugins import load_callable
from reindex.logging import configure_logging, get_logger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reindex",
        description="Rebuild a search index from the content repository, resumably.",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="list every type and index every resource until no errors remain")
    run.add_argument(
        "store",
        nargs="?",
        type=Path,
        help="existing store to resume (default: REINDEX_DB_PATH, else a new store)",
    )
    run.add_argument(
        "--recover",
        action="store_true",
        help="re-queue types/items left RUNNING by an earlier, interrupted run",
    )

    sub.add_parser("serve", help="serve the progress inspection API")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Programmatic entrypoint.

      reindex run [STORE] [--recover]
      reindex serve
    """
    args = _build_parser().parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        return _serve(settings)
    return _run(
        settings,
        store=getattr(args, "store", None),
        recover=getattr(args, "recover", False),
    )


def _run(settings: Settings, *, store: Optional[Path], recover: bool) -> int:
    log = get_logger(__name__)

    if not settings.lister or not settings.task:
        log.error("REINDEX_LISTER and REINDEX_TASK must both be set.")
        return 1

    try:
        lister = load_callable(settings.lister)
        task = load_callable(settings.task)

        cfg = RunnerConfig.from_settings(settings)
        store_path = store or settings.db_path
        if store_path is None:
            if not settings.types:
                log.warning("REINDEX_TYPES is empty; the new store has nothing to list.")
            reindexer = Reindexer.create(settings.types, cfg=cfg, store_dir=settings.store_dir)
        else:
            reindexer = Reindexer.resume(store_path, cfg)

        log.info("Using store %s", reindexer.path)
        with reindexer:
            if recover:
                reindexer.recover_stale()
            report = converge(reindexer, lister, task)
    except UnrecoverableErrorsError as e:
        log.error("%s (details=%s)", e, e.details)
        return 1
    except ReindexError as e:
        log.error("Reindex failed [%s]: %s", e.code, e)
        return 1

    log.info(
        "Finished OK! %d item(s) processed in %d pass(es).",
        report.processed,
        report.passes,
    )
    return 0


def _serve(settings: Settings) -> int:
    import uvicorn

    log = get_logger(__name__)
    log.info("Serving store %s on %s:%d", settings.db_path, settings.host, settings.port)
    uvicorn.run(
        "reindex.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
