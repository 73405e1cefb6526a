"""EMP Monitor - event ingestion and alerting for an ExpiringMultiParty contract."""

__version__ = "0.1.0"
