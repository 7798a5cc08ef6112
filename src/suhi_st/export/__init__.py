"""Asynchronous raster export."""

from .tasks import ExportJob, ExportTask, TaskState, image_to_folder

__all__ = ['ExportJob', 'ExportTask', 'TaskState', 'image_to_folder']
