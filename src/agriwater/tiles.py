"""Tile partitioning and concurrent evaluation of per-pixel kernels.

Every stage of the pipeline is a pure function of co-located pixels, so a
grid can be cut into disjoint windows and each window evaluated on its own.
Windows are written back in a fixed order, which keeps the output identical
no matter which worker finishes first.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from agriwater.errors import InvalidParameterRange
from agriwater.log import LOGGER

log = LOGGER.getChild("tiles")

Window = Tuple[slice, slice]
KernelOutput = Union[np.ndarray, Tuple[np.ndarray, ...]]
Kernel = Callable[..., KernelOutput]


def iter_windows(shape: Tuple[int, int], tile_size: int) -> Iterator[Window]:
    """Yield ``(rows, cols)`` slices covering ``shape`` in row-major order."""
    height, width = shape
    for row_start in range(0, height, tile_size):
        rows = slice(row_start, min(row_start + tile_size, height))
        for col_start in range(0, width, tile_size):
            yield rows, slice(col_start, min(col_start + tile_size, width))


def _as_tuple(result: KernelOutput) -> Tuple[np.ndarray, ...]:
    if isinstance(result, tuple):
        return result
    return (result,)


def _assemble(
    windows: Sequence[Window],
    results: Sequence[KernelOutput],
    shape: Tuple[int, int],
) -> KernelOutput:
    """Stitch per-window kernel outputs back into full-size arrays."""

    parts = [_as_tuple(result) for result in results]
    n_outputs = len(parts[0])

    outputs = []
    for i in range(n_outputs):
        dtype = np.result_type(*(np.asarray(part[i]) for part in parts))
        out = np.empty(shape, dtype=dtype)
        for (rows, cols), part in zip(windows, parts):
            out[rows, cols] = part[i]
        outputs.append(out)

    if isinstance(results[0], tuple):
        return tuple(outputs)
    return outputs[0]


@dataclass(frozen=True)
class TilePlan:
    """How to split a grid into windows and how many workers evaluate them.

    Parameters
    ----------
    tile_size:
        Edge length, in pixels, of each square window.
    max_workers:
        Thread pool size; ``None`` lets :class:`ThreadPoolExecutor` decide.
        NumPy releases the GIL inside its ufuncs so threads scale on large
        tiles without copying inputs to other processes.
    progress:
        Show a :mod:`tqdm` progress bar over windows.
    """

    tile_size: int = 512
    max_workers: Optional[int] = None
    progress: bool = False

    def __post_init__(self) -> None:
        if self.tile_size < 1:
            raise InvalidParameterRange("tile_size", self.tile_size, ">= 1")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidParameterRange("max_workers", self.max_workers, ">= 1 or None")

    def windows(self, shape: Tuple[int, int]) -> List[Window]:
        return list(iter_windows(shape, self.tile_size))

    def run(
        self,
        kernel: Kernel,
        arrays: Sequence[np.ndarray],
        shape: Tuple[int, int],
    ) -> KernelOutput:
        """Evaluate ``kernel`` on every window of ``arrays`` and reassemble."""

        windows = self.windows(shape)
        if len(windows) <= 1:
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                return kernel(*arrays)

        def _evaluate(window: Window) -> KernelOutput:
            rows, cols = window
            # errstate is thread local
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                return kernel(*(array[rows, cols] for array in arrays))

        log.debug(
            "Evaluating %s over %d tiles of %d px",
            getattr(kernel, "__name__", "kernel"),
            len(windows),
            self.tile_size,
        )

        logging_context = logging_redirect_tqdm() if self.progress else nullcontext()
        with logging_context, ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            # Executor.map yields in submission order regardless of completion order.
            results = executor.map(_evaluate, windows)
            if self.progress:
                results = tqdm(results, total=len(windows), desc="Evaluating tiles", unit="tile")
            results = list(results)

        return _assemble(windows, results, shape)
