"""
MEDIA BUDGET CALCULATION ENGINE
Version 1.0
"""

from .models import BudgetRequest, BudgetResult, BudgetSnapshot
from .processor import BudgetProcessor
from .session import BudgetSession, IntentTracker

__all__ = [
    'BudgetProcessor',
    'BudgetRequest',
    'BudgetResult',
    'BudgetSnapshot',
    'BudgetSession',
    'IntentTracker',
]
