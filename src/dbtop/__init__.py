"""dbtop: live database health monitor."""

from . import collectors, contracts, metrics, monitor, report

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "collectors",
    "contracts",
    "metrics",
    "monitor",
    "report",
]
