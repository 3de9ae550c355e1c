"""
Sale number generation.

Format: SALE-<YYYYMMDD>-<NNNN>-<xxxx>

NNNN is the company's same-day sale count plus one. It is read, not
allocated, so two concurrent checkouts may print the same NNNN; it is there
for humans. The random base-36 suffix is what keeps numbers apart, and the
(company_id, sale_number) unique constraint on sales is the hard guarantee.
"""

from __future__ import annotations

import secrets
import string
from datetime import date

from sqlalchemy import func

from ..errors import ConflictError
from ..extensions import db
from ..models import Sale
from ..time_utils import utc_day_bounds, utcnow

SALE_NUMBER_PREFIX = "SALE"
SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 4


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def format_sale_number(day: date, sequence: int, suffix: str) -> str:
    return f"{SALE_NUMBER_PREFIX}-{day:%Y%m%d}-{sequence:04d}-{suffix}"


def same_day_sale_count(company_id: int, day: date) -> int:
    start, end = utc_day_bounds(day)
    return (
        db.session.query(func.count(Sale.id))
        .filter(
            Sale.company_id == company_id,
            Sale.sale_date >= start,
            Sale.sale_date < end,
        )
        .scalar()
        or 0
    )


def sale_number_taken(company_id: int, sale_number: str) -> bool:
    return (
        db.session.query(Sale.id)
        .filter_by(company_id=company_id, sale_number=sale_number)
        .first()
        is not None
    )


def generate_sale_number(company_id: int, day: date | None = None, *, attempts: int = 5) -> str:
    """
    Produce a sale number not yet used by the company.

    Raises ConflictError if every attempt collides.
    """
    day = day or utcnow().date()
    sequence = same_day_sale_count(company_id, day) + 1

    for _ in range(attempts):
        candidate = format_sale_number(day, sequence, random_suffix())
        if not sale_number_taken(company_id, candidate):
            return candidate

    raise ConflictError(
        "Could not allocate a unique sale number",
        {"company_id": company_id, "attempts": attempts},
    )
