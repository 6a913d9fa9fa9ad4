# shopcore/models/membership.py
from .base import TimeStampedModel

class Membership(TimeStampedModel):
    """Loyalty membership; points are never negative"""
    membership_id: int
    user_id: int
    points: int = 0
