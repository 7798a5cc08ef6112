"""
Asynchronous raster export.

An ExportTask materialises an Image to a GeoTIFF on a background thread.
Submitting it does not block; the task exposes its state, the failure
message if any, ``wait()`` and completion callbacks so callers can observe
the outcome when they choose to.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.warp import reproject

from ..data.image import Grid, Image
from ..exceptions import PixelLimitError

logger = logging.getLogger(__name__)

# Export format -> (GDAL driver, file extension)
FORMATS = {
    "GeoTIFF": ("GTiff", ".tif"),
}

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _shared_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="export")
        return _executor


class TaskState(str, Enum):
    READY = "READY"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class ExportJob:
    """Descriptor of an export: what to write, where, at which scale."""

    image: Image
    description: str
    folder: str
    file_name_prefix: str
    scale: float
    max_pixels: float
    file_format: str = "GeoTIFF"
    output_root: str = "./exports"

    def __post_init__(self):
        if self.file_format not in FORMATS:
            raise ValueError(f"Unsupported export format {self.file_format!r}; expected one of {list(FORMATS)}")
        if self.scale <= 0:
            raise ValueError(f"Export scale must be positive, got {self.scale}")

    @property
    def destination(self) -> Path:
        _, ext = FORMATS[self.file_format]
        return Path(self.output_root) / self.folder / f"{self.file_name_prefix}{ext}"

    def target_grid(self) -> Grid:
        grid = self.image.grid
        if abs(grid.resolution - self.scale) < 1e-9:
            return grid
        return Grid.from_bounds(grid.bounds, self.scale, grid.crs)


def resample_band(image: Image, band: str, grid: Grid) -> np.ndarray:
    """Band warped onto grid with masked pixels carried as NaN."""
    src = np.where(image.mask(band), image.band(band), np.nan).astype("float32")
    if grid == image.grid:
        return src
    dst = np.full(grid.shape, np.nan, dtype="float32")
    reproject(
        source=src,
        destination=dst,
        src_transform=image.grid.transform,
        src_crs=image.grid.crs,
        dst_transform=grid.transform,
        dst_crs=grid.crs,
        src_nodata=np.nan,
        dst_nodata=np.nan,
        resampling=Resampling.nearest,
    )
    return dst


def write_image(job: ExportJob) -> Path:
    """
    Write job.image to job.destination.

    Raises:
        PixelLimitError: the output grid exceeds job.max_pixels.
    """
    grid = job.target_grid()
    if grid.pixel_count > job.max_pixels:
        raise PixelLimitError(grid.pixel_count, job.max_pixels, what="export")

    names = job.image.band_names
    driver, _ = FORMATS[job.file_format]
    path = job.destination
    path.parent.mkdir(parents=True, exist_ok=True)

    profile = {
        "driver": driver,
        "height": grid.height,
        "width": grid.width,
        "count": max(1, len(names)),
        "dtype": "float32",
        "crs": grid.crs,
        "transform": grid.transform,
        "nodata": np.nan,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **profile) as dst:
        if not names:
            dst.write(np.full((1,) + grid.shape, np.nan, dtype="float32"))
        for i, name in enumerate(names, 1):
            dst.write(resample_band(job.image, name, grid), i)
            dst.set_band_description(i, name)
        dst.update_tags(DESCRIPTION=job.description)

    return path


class ExportTask:
    """Handle on a background export."""

    _ids = 0
    _ids_lock = threading.Lock()

    def __init__(self, job: ExportJob, executor: Optional[ThreadPoolExecutor] = None):
        self.job = job
        self._executor = executor
        self._lock = threading.Lock()
        self._state = TaskState.READY
        self._error: Optional[BaseException] = None
        self._result: Optional[Path] = None
        self._future = None
        self._callbacks: List[Callable[["ExportTask"], None]] = []
        self._done = threading.Event()
        self.created = time.time()
        self.updated = self.created
        with ExportTask._ids_lock:
            ExportTask._ids += 1
            self.id = f"export-{ExportTask._ids:04d}"

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def _set_state(self, state: TaskState):
        with self._lock:
            self._state = state
            self.updated = time.time()

    def start(self) -> "ExportTask":
        """Submit the export; returns immediately."""
        with self._lock:
            if self._state != TaskState.READY:
                raise RuntimeError(f"Task {self.id} already {self._state.value}")
            executor = self._executor or _shared_executor()
            self._future = executor.submit(self._run)
        logger.info(f"Export {self.id} ({self.job.description}) submitted -> {self.job.destination}")
        return self

    def _run(self):
        if self._state == TaskState.CANCELLED:
            return
        self._set_state(TaskState.RUNNING)
        try:
            self._result = write_image(self.job)
        except Exception as e:
            self._error = e
            self._set_state(TaskState.FAILED)
            logger.error(f"Export {self.id} failed: {e}")
        else:
            self._set_state(TaskState.COMPLETED)
            logger.info(f"Export {self.id} completed: {self._result}")
        finally:
            self._finish()

    def _finish(self):
        self._done.set()
        with self._lock:
            callbacks = list(self._callbacks)
        for fn in callbacks:
            fn(self)

    def active(self) -> bool:
        return self._state in (TaskState.READY, TaskState.RUNNING) and self._future is not None

    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> bool:
        """Cancel a task that has not started running."""
        with self._lock:
            if self._state != TaskState.READY:
                return False
            if self._future is not None and not self._future.cancel():
                return False
            self._state = TaskState.CANCELLED
            self.updated = time.time()
        self._finish()
        return True

    def add_done_callback(self, fn: Callable[["ExportTask"], None]) -> None:
        """Call fn(task) once the task completes, fails or is cancelled."""
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(fn)
                return
        fn(self)

    def wait(self, timeout: Optional[float] = None) -> Path:
        """
        Block until the task finishes and return the written path.

        Raises:
            TimeoutError: the task did not finish within timeout.
            RuntimeError: the task was cancelled or never started.
            Exception: whatever error made the export fail.
        """
        if self._future is None and self._state == TaskState.READY:
            raise RuntimeError(f"Task {self.id} was never started")
        if not self._done.wait(timeout):
            raise TimeoutError(f"Export {self.id} still {self._state.value} after {timeout}s")
        if self._state == TaskState.FAILED:
            raise self._error
        if self._state == TaskState.CANCELLED:
            raise RuntimeError(f"Export {self.id} was cancelled")
        return self._result

    def status(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "description": self.job.description,
            "state": self._state.value,
            "destination": str(self.job.destination),
            "error_message": str(self._error) if self._error else None,
            "creation_timestamp_ms": int(self.created * 1000),
            "update_timestamp_ms": int(self.updated * 1000),
        }

    def __repr__(self):
        return f"ExportTask({self.id}, {self.job.description!r}, {self._state.value})"


def image_to_folder(
    image: Image,
    description: str,
    folder: str,
    file_name_prefix: Optional[str] = None,
    scale: float = 30,
    max_pixels: float = 1e8,
    file_format: str = "GeoTIFF",
    output_root: str = "./exports",
    executor: Optional[ThreadPoolExecutor] = None,
) -> ExportTask:
    """Describe an export of image to <output_root>/<folder>/; call start() to run it."""
    job = ExportJob(
        image=image,
        description=description,
        folder=folder,
        file_name_prefix=file_name_prefix or description,
        scale=scale,
        max_pixels=max_pixels,
        file_format=file_format,
        output_root=output_root,
    )
    return ExportTask(job, executor=executor)
