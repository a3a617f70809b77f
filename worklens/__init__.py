"""
WorkLens - hierarchical work classification

Raw activity events are buffered, classified into task clusters and
aggregated into subtasks and major tasks. Entry point is
worklens.core.coordinator.get_coordinator().
"""

__version__ = "0.1.0"
