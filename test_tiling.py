"""
Tests for tiled execution, timeouts and cancellation.
"""

import threading
import time

import numpy as np
import pytest

from conftest import CRS, ORIGIN, RES
from carbon_lulc.carbon import BiomassEstimator
from carbon_lulc.exceptions import OperationCancelledError, ProcessingTimeoutError
from carbon_lulc.utils.raster_utils import make_raster
from carbon_lulc.utils.tiling import (
    CancellationToken,
    TileExecutor,
    count_tiles,
    iter_tiles,
    run_with_timeout,
)


def test_tiles_cover_grid_without_overlap():
    covered = np.zeros((23, 17), dtype=int)
    tiles = list(iter_tiles(23, 17, 5))
    for tile in tiles:
        covered[tile.rows, tile.cols] += 1
    assert np.all(covered == 1)
    assert len(tiles) == count_tiles(23, 17, 5) == 20
    assert [t.index for t in tiles] == list(range(20))


def test_pool_yields_results_in_tile_order():
    def work(tile):
        # Later tiles finish first
        time.sleep(0.02 * (5 - tile.index % 5))
        return tile.index

    executor = TileExecutor(max_workers=4)
    results = [result for _, result in executor.run(iter_tiles(10, 10, 2), work)]
    assert results == list(range(25))


def test_cancelled_token_aborts_between_tiles():
    token = CancellationToken()
    seen = []

    def work(tile):
        seen.append(tile.index)
        if tile.index == 2:
            token.cancel()
        return tile.index

    with pytest.raises(OperationCancelledError):
        list(TileExecutor(cancel_token=token).run(iter_tiles(10, 10, 2), work))
    assert seen == [0, 1, 2]


def test_tiled_operation_honours_cancellation():
    token = CancellationToken()
    token.cancel()
    ndvi = make_raster(np.full((8, 8), 0.3), ORIGIN, RES, crs=CRS)
    with pytest.raises(OperationCancelledError):
        BiomassEstimator(tile_size=2).estimate(ndvi, cancel_token=token)


@pytest.mark.parametrize("workers", [1, 3])
def test_deadline_raises_timeout(workers):
    def slow(tile):
        time.sleep(0.2)
        return tile.index

    executor = TileExecutor(max_workers=workers, timeout=0.3)
    with pytest.raises(ProcessingTimeoutError):
        list(executor.run(iter_tiles(10, 10, 2), slow))


def test_run_with_timeout():
    assert run_with_timeout(lambda x: x * 2, 1.0, 21) == 42
    assert run_with_timeout(lambda: "no limit", None) == "no limit"
    with pytest.raises(TimeoutError):
        run_with_timeout(time.sleep, 0.05, 1, description="sleep")


def test_timed_out_call_runs_on_daemon_thread():
    with pytest.raises(ProcessingTimeoutError):
        run_with_timeout(time.sleep, 0.05, 0.5, description="hung search")
    workers = [t for t in threading.enumerate() if t.name == "hung search worker"]
    assert workers and all(t.daemon for t in workers)
