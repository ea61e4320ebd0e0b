"""
Price Outlier Flagging

IQR fences per (sku, size_key, currency_code, marketplace_id) group of eBay
sold transactions. Flagged transactions drop out of included_in_metrics but
still count toward the engine's outlier ratio.
"""

from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

import numpy as np
import structlog

from market_pipeline.normalization.ebay import EbayTransaction

logger = structlog.get_logger(__name__)

# Fewer points than this give quartiles too unstable to fence on
MIN_GROUP_SIZE = 4


def flag_price_outliers(
    transactions: Sequence[EbayTransaction],
    iqr_multiplier: float = 1.5,
) -> int:
    """
    Mark transactions priced outside [q1 - k*iqr, q3 + k*iqr] of their group.

    Only priced, non-excluded transactions form the baseline and are eligible
    for flagging. Transactions are updated in place.

    Returns:
        Number of transactions newly flagged
    """
    groups: Dict[Tuple, List[EbayTransaction]] = defaultdict(list)
    for transaction in transactions:
        if transaction.sale_price_cents is None or transaction.exclusion_reason is not None:
            continue
        key = (transaction.sku, transaction.size_key, transaction.currency_code, transaction.marketplace_id)
        groups[key].append(transaction)

    flagged = 0
    for key, members in groups.items():
        if len(members) < MIN_GROUP_SIZE:
            continue

        prices = np.array([t.sale_price_cents for t in members], dtype=float)
        q1 = float(np.percentile(prices, 25))
        q3 = float(np.percentile(prices, 75))
        iqr = q3 - q1
        if iqr == 0:
            continue

        lower_bound = q1 - iqr_multiplier * iqr
        upper_bound = q3 + iqr_multiplier * iqr

        for transaction in members:
            price = transaction.sale_price_cents
            if transaction.is_outlier or lower_bound <= price <= upper_bound:
                continue
            transaction.is_outlier = True
            transaction.outlier_reason = "iqr_high" if price > upper_bound else "iqr_low"
            flagged += 1

    if flagged:
        logger.info("Flagged price outliers", flagged=flagged, groups=len(groups))
    return flagged
