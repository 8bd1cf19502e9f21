"""
Product review submission payloads.
"""

import re
from typing import Any, Dict

from pydantic import BaseModel

from shared.errors import ValidationError


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_REVIEW_LENGTH = 10


class ReviewSubmission(BaseModel):
    rating: int = 0
    review: str = ""
    reviewer: str = ""
    reviewer_email: str = ""

    def validated(self) -> Dict[str, Any]:
        """Return the trimmed upstream payload or raise ``ValidationError``."""
        if not 1 <= self.rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        review = self.review.strip()
        if len(review) < MIN_REVIEW_LENGTH:
            raise ValidationError(f"Review must be at least {MIN_REVIEW_LENGTH} characters")

        reviewer = self.reviewer.strip()
        if not reviewer:
            raise ValidationError("Name is required")

        email = self.reviewer_email.strip()
        if not email:
            raise ValidationError("Email is required")
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Email is invalid")

        return {
            "review": review,
            "reviewer": reviewer,
            "reviewer_email": email,
            "rating": self.rating,
        }
