from .sequences import SequenceCounter
from .intake import IntakeRecord, VerificationRecord, QCDecision
from .inventory import InventoryItem, StockMovement

__all__ = [
    'SequenceCounter',
    'IntakeRecord', 'VerificationRecord', 'QCDecision',
    'InventoryItem', 'StockMovement',
]
