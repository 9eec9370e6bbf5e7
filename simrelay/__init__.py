"""simrelay: relay a simulation's event stream to WebSocket observers.

Supervises the external simulation process, parses its output into typed
events, folds them into aggregate network state and fans them out to
connected observers with per-observer filters.
"""

__version__ = "1.0.0"
