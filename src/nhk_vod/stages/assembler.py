"""
Stage 4: Assembler

Concatenates staged segments, byte for byte and in list order, into a
single output file. Each segment is read fully and appended with one
write. A failure leaves the partially written output in place.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from nhk_vod.exceptions import FileReadError, FileWriteError
from nhk_vod.schemas.download_output import AssemblyResult
from nhk_vod.utils import format_bytes

logger = logging.getLogger(__name__)


def assemble(paths: Iterable[str | Path], output_path: str | Path) -> AssemblyResult:
    """
    Append every file in ``paths`` to ``output_path``.

    The output is opened in append mode; callers wanting a fresh file must
    remove any previous artifact first.

    Raises:
        FileReadError: A staged segment could not be read.
        FileWriteError: The output could not be created or appended to.
    """
    out = Path(output_path)
    ordered = [Path(p) for p in paths]
    total_bytes = 0

    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        final_file = open(out, "ab")
    except OSError as e:
        raise FileWriteError(f"Cannot open output file {out}: {e}", path=str(out)) from e

    with final_file:
        for position, segment_path in enumerate(ordered):
            try:
                data = segment_path.read_bytes()
            except OSError as e:
                raise FileReadError(
                    f"Cannot read segment #{position} {segment_path}: {e}",
                    path=str(segment_path),
                ) from e
            try:
                final_file.write(data)
            except OSError as e:
                raise FileWriteError(
                    f"Cannot append segment #{position} to {out}: {e}", path=str(out),
                ) from e
            total_bytes += len(data)

    logger.info("Merged %d segment(s) into %s (%s)", len(ordered), out, format_bytes(total_bytes))
    return AssemblyResult(
        output_path=str(out),
        segment_count=len(ordered),
        total_bytes=total_bytes,
    )
