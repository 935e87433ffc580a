from .audit import AuditLog, AuditSink
from .config import ProcessorConfig
from .deadline import Deadline
from .gateway import ProviderGateway
from .processor import PaymentProcessor
from .retry import GiveUp, RetryAfter, RetryPolicy

__all__ = [
    "PaymentProcessor",
    "ProviderGateway",
    "RetryPolicy",
    "RetryAfter",
    "GiveUp",
    "Deadline",
    "AuditLog",
    "AuditSink",
    "ProcessorConfig",
]
