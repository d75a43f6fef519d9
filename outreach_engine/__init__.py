"""
Outreach Engine
===============
Deterministic execution engine for model-driven outreach campaigns.

The model proposes. The engine validates, executes through discovered tool
servers, records every step, and survives restarts.
"""

__version__ = "0.1.0"
