"""
VisaFlow - Document approval workflow engine.

Runs validation workflows (graphs of start, status, review, decision,
action and end nodes) against documents, collecting reviews ("visas")
until each document is approved, rejected or routed elsewhere.
"""

__version__ = "1.0.0"
