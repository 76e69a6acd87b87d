"""Service modules"""
from .coordinator import ExecutionCoordinator
from .executor import LiquidationExecutor
from .planner import LiquidationPlanner

__all__ = ["ExecutionCoordinator", "LiquidationExecutor", "LiquidationPlanner"]
