"""
Comment Service — free-form discussion on an NCR.

Comments sit beside the workflow history; they never change stage or
assignment and are not part of the audit trail.
"""

import logging

from ncr_tracker.core.exceptions import ValidationError
from ncr_tracker.models import db
from ncr_tracker.models.ncr import CommentType, Ncr, NcrComment
from ncr_tracker.services.identity import Principal

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000
VALID_COMMENT_TYPES = frozenset(t.value for t in CommentType)


def add_comment(
    ncr: Ncr,
    principal: Principal,
    content: str,
    comment_type: str | None = None,
) -> NcrComment:
    """Attach a comment to *ncr*.

    Raises:
        ValidationError: empty / oversized content or unknown comment_type.
    """
    if content is not None and not isinstance(content, str):
        raise ValidationError("content must be a string", details={"content": "not_text"})
    content = (content or "").strip()
    if not content:
        raise ValidationError("content is required", details={"content": "required"})
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            f"content must be at most {MAX_COMMENT_LENGTH} characters",
            details={"content": "too_long"},
        )
    comment_type = comment_type or CommentType.GENERAL.value
    if not isinstance(comment_type, str) or comment_type not in VALID_COMMENT_TYPES:
        raise ValidationError(
            f"comment_type must be one of: {', '.join(sorted(VALID_COMMENT_TYPES))}",
            details={"comment_type": comment_type},
        )

    comment = NcrComment(
        ncr_id=ncr.id,
        user_id=principal.id,
        content=content,
        comment_type=comment_type,
    )
    db.session.add(comment)
    db.session.commit()
    logger.debug("Comment added", extra={"ncr_id": ncr.id, "principal_id": principal.id})
    return comment


def list_comments(ncr_id: str) -> list[NcrComment]:
    """Comments on an NCR, newest first."""
    return (
        NcrComment.query.filter_by(ncr_id=ncr_id)
        .order_by(NcrComment.created_at.desc(), NcrComment.id.desc())
        .all()
    )
