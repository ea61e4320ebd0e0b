"""
Data Validation Module

Rule-based checks over a batch of market facts before it is written.
Implements validation patterns inspired by Great Expectations.

Checks run on a polars DataFrame built from the batch:
- Null checks
- Uniqueness checks
- Range checks on prices and counts
- Allowed-value checks
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from market_pipeline.normalization.facts import MarketFact, Provider, utcnow

logger = structlog.get_logger(__name__)

PRICE_COLUMNS = (
    "lowest_ask",
    "highest_bid",
    "last_sale_price",
    "sell_faster_price",
    "earn_more_price",
    "beat_us_price",
    "global_indicator_price",
)

COUNT_COLUMNS = (
    "sales_last_72h",
    "sales_last_30d",
    "total_sales_volume",
    "ask_count",
    "bid_count",
)

FACTS_SCHEMA: Dict[str, Any] = {
    "natural_key": pl.Utf8,
    "provider": pl.Utf8,
    "provider_source": pl.Utf8,
    "size_key": pl.Utf8,
    "currency_code": pl.Utf8,
    **{column: pl.Int64 for column in PRICE_COLUMNS},
    **{column: pl.Int64 for column in COUNT_COLUMNS},
}


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"
    WARNING = "warning"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def failed(self) -> List[ValidationCheck]:
        return [check for check in self.checks if not check.passed]


def _missing_column(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class DataValidator:
    """
    Batch validator with a chainable check suite.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("size_key")
        validator.add_range_check("lowest_ask", min_value=0)
        result = validator.validate(df)
    """

    def __init__(self):
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null or empty values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            expr = pl.col(column).is_null()
            if df.schema[column] == pl.Utf8:
                expr = expr | (pl.col(column).str.strip_chars() == "")
            null_count = df.filter(expr).height
            passed = null_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} empty values" if not passed else f"Column '{column}' has no empty values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            duplicate_count = df.height - df[column].n_unique()
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {duplicate_count} duplicate values" if not passed else f"Column '{column}' values are unique",
                details={"duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for non-null values within [min_value, max_value]"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)
            if not conditions:
                return ValidationCheck(name=name, passed=True, severity=severity, message="No range specified")

            combined = conditions[0]
            for cond in conditions[1:]:
                combined = combined | cond

            out_of_range = df.filter(combined).height
            passed = out_of_range == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"enum_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
            ).height
            passed = invalid == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values" if not passed else "All values are valid",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = utcnow()
        results = []

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    "Validation check failed",
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.debug(
            "Validation complete",
            status=status.value,
            rows=df.height,
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=utcnow(),
        )


def facts_frame(facts: Sequence[MarketFact]) -> pl.DataFrame:
    """Columnar view of a fact batch for validation"""
    columns = {
        "natural_key": [fact.natural_key_id for fact in facts],
        **{
            name: [getattr(fact, name) for fact in facts]
            for name in FACTS_SCHEMA
            if name != "natural_key"
        },
    }
    return pl.DataFrame(columns, schema=FACTS_SCHEMA)


def create_market_facts_validator() -> DataValidator:
    """Create pre-configured validator for master_market_data batches"""
    validator = (
        DataValidator()
        .add_unique_check("natural_key")
        .add_not_null_check("size_key")
        .add_not_null_check("provider_source")
        .add_not_null_check("currency_code")
        .add_enum_check("provider", [provider.value for provider in Provider])
    )
    for column in PRICE_COLUMNS:
        validator.add_range_check(column, min_value=0)
    for column in COUNT_COLUMNS:
        validator.add_range_check(column, min_value=0, severity=ValidationSeverity.WARNING)
    return validator
