"""
NCR number generator.

Format: NCR-{seq}  (4-digit, zero padded; e.g. NCR-0001, NCR-0042)

Numbers are handed out on an NCR's first submission, not at creation, so
abandoned drafts do not consume sequence values.  Uniqueness is enforced by
the ``ncrs.ncr_number`` unique constraint; a concurrent collision surfaces
as a commit failure and the caller retries.
"""

from ncr_tracker.models import db
from ncr_tracker.models.ncr import Ncr

NCR_PREFIX = "NCR-"


def _next_seq(codes) -> int:
    max_num = 0
    for code in codes:
        try:
            num = int(code[len(NCR_PREFIX):])
        except (TypeError, ValueError):
            continue
        max_num = max(max_num, num)
    return max_num + 1


def generate_ncr_number(session=None) -> str:
    """Next free NCR number (max existing + 1, so deletions never cause reuse)."""
    session = session or db.session
    codes = (
        session.query(Ncr.ncr_number)
        .filter(Ncr.ncr_number.like(f"{NCR_PREFIX}%"))
        .all()
    )
    return f"{NCR_PREFIX}{_next_seq(c[0] for c in codes):04d}"
