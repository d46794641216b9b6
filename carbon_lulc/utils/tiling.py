"""
Tiled execution helpers.

Large rasters are processed tile by tile so that peak memory is bounded by
the tile size. Tiles are independent: workers only read immutable inputs and
return their result to the caller, which merges results in tile order.
"""

import concurrent.futures
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Tuple

import numpy as np
import xarray as xr
from tqdm.auto import tqdm

from ..exceptions import OperationCancelledError, ProcessingTimeoutError
from .raster_utils import finalize_raster, get_crs, grid_shape, read_block

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tile:
    index: int
    rows: slice
    cols: slice

    @property
    def shape(self) -> Tuple[int, int]:
        return self.rows.stop - self.rows.start, self.cols.stop - self.cols.start


def iter_tiles(height: int, width: int, tile_size: int,
               row_offset: int = 0, col_offset: int = 0) -> Iterator[Tile]:
    """Yield row-major tiles covering a ``height`` x ``width`` window."""
    if tile_size < 1:
        raise ValueError(f"tile_size must be positive, got {tile_size}")
    index = 0
    for r in range(0, height, tile_size):
        for c in range(0, width, tile_size):
            yield Tile(
                index=index,
                rows=slice(row_offset + r, row_offset + min(r + tile_size, height)),
                cols=slice(col_offset + c, col_offset + min(c + tile_size, width)),
            )
            index += 1


def count_tiles(height: int, width: int, tile_size: int) -> int:
    return (-(-height // tile_size)) * (-(-width // tile_size))


class CancellationToken:
    """Cooperative cancellation flag checked between tiles."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")


class Deadline:
    """Absolute deadline built from an optional timeout in seconds."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._expires = None if timeout is None else time.monotonic() + float(timeout)

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(self._expires - time.monotonic(), 0.0)

    def check(self, what: str = "operation") -> None:
        if self._expires is not None and time.monotonic() >= self._expires:
            raise ProcessingTimeoutError(f"{what} exceeded timeout of {self.timeout}s")


def run_with_timeout(func: Callable, timeout: Optional[float], *args,
                     description: str = "operation", **kwargs) -> Any:
    """
    Call ``func`` and fail with ProcessingTimeoutError after ``timeout`` seconds.

    The call runs in a daemon thread. On timeout the caller stops waiting and
    the result is discarded; a call that never returns does not keep the
    interpreter alive at exit.
    """
    if timeout is None:
        return func(*args, **kwargs)

    future = concurrent.futures.Future()

    def call():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=call, name=f"{description} worker", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        raise ProcessingTimeoutError(f"{description} exceeded timeout of {timeout}s")


class TileExecutor:
    """
    Run a function over tiles sequentially or on a thread pool.

    Results are yielded in tile order whatever the worker count, so merges
    built on them are deterministic. Cancellation and the deadline are checked
    before each tile is submitted and while waiting for results.
    """

    def __init__(self,
                 max_workers: int = 1,
                 timeout: Optional[float] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 show_progress: bool = False,
                 description: str = "Processing tiles"):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.max_workers = max(int(max_workers or 1), 1)
        self.timeout = timeout
        self.cancel_token = cancel_token or CancellationToken()
        self.show_progress = show_progress
        self.description = description

    def _check(self, deadline: Deadline) -> None:
        self.cancel_token.raise_if_cancelled()
        deadline.check(self.description)

    def run(self, tiles, func: Callable[[Tile], Any], total: Optional[int] = None) -> Iterator[Tuple[Tile, Any]]:
        deadline = Deadline(self.timeout)
        progress = tqdm(total=total, desc=self.description, unit="tile",
                        disable=not self.show_progress)
        try:
            if self.max_workers == 1:
                for tile in tiles:
                    self._check(deadline)
                    result = func(tile)
                    progress.update(1)
                    yield tile, result
                return

            yield from self._run_pool(tiles, func, deadline, progress)
        finally:
            progress.close()

    def _run_pool(self, tiles, func, deadline: Deadline, progress) -> Iterator[Tuple[Tile, Any]]:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers)
        pending = deque()
        max_in_flight = 2 * self.max_workers
        tiles = iter(tiles)
        try:
            exhausted = False
            while True:
                while not exhausted and len(pending) < max_in_flight:
                    self._check(deadline)
                    tile = next(tiles, None)
                    if tile is None:
                        exhausted = True
                        break
                    pending.append((tile, executor.submit(func, tile)))
                if not pending:
                    break
                tile, future = pending.popleft()
                result = self._wait(future, deadline)
                progress.update(1)
                yield tile, result
        finally:
            for _, future in pending:
                future.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

    def _wait(self, future, deadline: Deadline) -> Any:
        # Poll so that cancellation is honoured while a tile is in flight
        while True:
            self._check(deadline)
            remaining = deadline.remaining()
            wait_for = 0.1 if remaining is None else min(0.1, remaining)
            try:
                return future.result(timeout=wait_for)
            except concurrent.futures.TimeoutError:
                continue


def map_tiles(raster, func: Callable, executor: TileExecutor, tile_size: int = 512,
              dtype: str = "float64", name: Optional[str] = None):
    """
    Apply a per-pixel ``func`` to ``raster`` tile by tile.

    ``func`` receives a float block with NaN nodata and returns a block of the
    same shape. The result keeps the grid and CRS of ``raster``.
    """
    shape = grid_shape(raster)
    output = np.full(shape, np.nan, dtype=dtype)
    tiles = iter_tiles(shape[0], shape[1], tile_size)

    def work(tile: Tile):
        return func(read_block(raster, tile.rows, tile.cols))

    for tile, block in executor.run(tiles, work, total=count_tiles(shape[0], shape[1], tile_size)):
        output[tile.rows, tile.cols] = block
    result = xr.DataArray(
        output,
        dims=("y", "x"),
        coords={"y": raster.coords["y"].values, "x": raster.coords["x"].values},
        name=name or raster.name,
    )
    return finalize_raster(result, crs=get_crs(raster))
