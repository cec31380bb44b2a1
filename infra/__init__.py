"""Infrastructure modules for the momentum bot"""

from .alerting import AlertService, AlertSeverity, TradeNotifier  # noqa: F401
from .metrics import MetricsRecorder  # noqa: F401
from .healthcheck import HealthServer  # noqa: F401
from .instance_lock import SingleInstanceLock  # noqa: F401
from .state_store import JsonLedgerStore  # noqa: F401

__all__ = [
	"AlertService",
	"AlertSeverity",
	"TradeNotifier",
	"MetricsRecorder",
	"HealthServer",
	"SingleInstanceLock",
	"JsonLedgerStore",
]
