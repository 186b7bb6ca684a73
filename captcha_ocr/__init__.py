from .pipeline.schemas import Candidate, SolveResult
from .pipeline.solve import StrategyRunner, solve_bytes, solve_image, solve_payload

__version__ = "0.2.0"

__all__ = [
    "Candidate",
    "SolveResult",
    "StrategyRunner",
    "solve_bytes",
    "solve_image",
    "solve_payload",
]
