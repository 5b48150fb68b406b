"""Execution layer -- fund movement and the in-memory paper backend."""

from .fund_mover import FundMover, MoveTransaction
from .paper_backend import PaperBackend, StaticGasPrice

__all__ = ["FundMover", "MoveTransaction", "PaperBackend", "StaticGasPrice"]
