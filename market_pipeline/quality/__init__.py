"""
Data Quality Module
"""
from .outliers import flag_price_outliers
from .validators import (
    DataValidator,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_market_facts_validator,
    facts_frame,
)

__all__ = [
    "flag_price_outliers",
    "DataValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "create_market_facts_validator",
    "facts_frame",
]
