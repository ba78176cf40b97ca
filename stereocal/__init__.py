"""Pinhole camera calibration and multi-view stereo triangulation."""

__version__ = "0.1.0"

from . import calibration
from . import data
from . import triangulation
from . import utils
from .calibration import calibration_io
