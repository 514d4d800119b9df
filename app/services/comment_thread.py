"""Comment thread - append-only discussion on a change request."""
from typing import List, Optional

from sqlalchemy.orm import Session

from app.errors import ValidationError
from app.models.domain import Comment
from app.utils.time import utc_now


class CommentThread:
    """Appends and lists comments on a change request. No edit or delete."""

    def __init__(self, db: Session):
        self.db = db

    def add_comment(
        self,
        change_request_id: str,
        author_id: str,
        author_name: Optional[str],
        content: str
    ) -> Comment:
        """Append a comment. Allowed in every lifecycle state."""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment content is required", fields=["content"])

        comment = Comment(
            change_request_id=change_request_id,
            author_id=author_id,
            author_name=author_name,
            content=content,
            created_at=utc_now(),
        )
        self.db.add(comment)
        self.db.flush()
        return comment

    def list_comments(self, change_request_id: str) -> List[Comment]:
        """
        Oldest first. Insertion order breaks ties, so re-querying returns the
        same prefix followed by anything added since.
        """
        return self.db.query(Comment).filter(
            Comment.change_request_id == change_request_id
        ).order_by(Comment.created_at.asc(), Comment.seq.asc()).all()
