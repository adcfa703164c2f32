#!/usr/bin/env python
"""
Compile observed and synthetic SAC waveforms into binary datasets.

    seiscompile --config compile.yml
    seiscompile --write-default compile.yml
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from seiscompile.compile.compiler import compile_dataset
from seiscompile.config import load_config, write_default_config
from seiscompile.errors import CompileError

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Compile observed/synthetic waveform pairs into index/payload datasets")
    grp = ap.add_mutually_exclusive_group(required=True)
    grp.add_argument("--config", help="Configuration file (.yml/.yaml or .json)")
    grp.add_argument("--write-default", metavar="PATH", help="Write a commented configuration template and exit")
    ap.add_argument("--workers", type=int, default=None, help="Override n_workers from the configuration")
    ap.add_argument("--log", default="INFO", help="Logging level")
    args = ap.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log.upper(), logging.INFO), format="%(levelname)s %(message)s")

    if args.write_default:
        try:
            path = write_default_config(args.write_default)
        except FileExistsError as e:
            logger.error(str(e))
            return 1
        logger.info(f"Wrote {path}")
        return 0

    try:
        config = load_config(args.config)
        if args.workers is not None:
            config = type(config).from_dict({**config.to_dict(), "n_workers": args.workers})
        result = compile_dataset(config)
    except CompileError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2
    print(f"{result.n_pairs} pairs written to {result.output_folder}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
