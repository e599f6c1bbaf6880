"""DermaCheck client core: remote calls, session, history and analysis workflow."""
__version__ = "0.1.0"
