__version__ = "0.1.0"

from .agents import AgentFrame
from .agents import Status
from .binning import BinCache
from .binning import BinIndex
from .binning import build_bins
from .commute import FlowTable
from .geometry import Geometry
from .propertyset import PropertySet

__all__ = [
    "AgentFrame",
    "BinCache",
    "BinIndex",
    "FlowTable",
    "Geometry",
    "PropertySet",
    "Status",
    "__version__",
    "build_bins",
]
