from .generator import SummaryGenerator
from .models import SummaryMeta, build_payload
from .scheduler import SummaryScheduler
from .tracker import SummaryTracker, summary_meta_key
from .webhook import SummaryWebhookClient

__all__ = [
    "SummaryGenerator",
    "SummaryMeta",
    "SummaryScheduler",
    "SummaryTracker",
    "SummaryWebhookClient",
    "build_payload",
    "summary_meta_key",
]
