# Application Scheduling Package
from .engine import MemoryModelEngine
from .parameters import build_parameters, load_parameters

__all__ = ["MemoryModelEngine", "build_parameters", "load_parameters"]
