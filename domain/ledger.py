"""The visit ledger: visits and participant ratings embedded in a restaurant.

Averages are derived fields. They are always rebuilt from the participant
ratings with `compute_average`, never adjusted in place, so the stored value
cannot drift from the ratings it summarises.
"""
from datetime import date
from typing import Iterable

from domain.errors import ForbiddenError, NotFoundError, ValidationError
from domain.models import Member, Participant, Restaurant, Visit


MIN_RATING = 0
MAX_RATING = 5


def compute_average(ratings: Iterable[float | None]) -> float:
    """Mean of the non-null ratings, exactly 0 when there are none."""
    rated = [r for r in ratings if r is not None]
    if not rated:
        return 0.0
    return sum(rated) / len(rated)


def recompute_visit(visit: Visit) -> None:
    visit.rating_average = compute_average(visit.ratings())


def recompute_restaurant(restaurant: Restaurant) -> None:
    restaurant.rating_average = compute_average(restaurant.ratings())


def recompute(restaurant: Restaurant, visit: Visit | None = None) -> None:
    if visit is not None:
        recompute_visit(visit)
    recompute_restaurant(restaurant)


def validate_rating(rating: object) -> float:
    # bool is an int subclass, True would otherwise pass as 1
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        raise ValidationError(
            f"Rating must be a number between {MIN_RATING} and {MAX_RATING}."
        )
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be a number between {MIN_RATING} and {MAX_RATING}."
        )
    return float(rating)


def new_visit(*, number: int, visit_date: date, members: Iterable[Member]) -> Visit:
    participants = [Participant(member_id=m.id, member=m) for m in members]
    return Visit(number=number, visit_date=visit_date, participants=participants)


def append_visit(
    restaurant: Restaurant,
    *,
    visit_date: date,
    members: Iterable[Member],
) -> Visit:
    """Add the next visit. Sequence numbers are never reused."""
    number = max((v.number for v in restaurant.visits), default=0) + 1
    visit = new_visit(number=number, visit_date=visit_date, members=members)
    restaurant.visits.append(visit)
    if restaurant.last_visited is None or visit_date > restaurant.last_visited:
        restaurant.last_visited = visit_date
    recompute(restaurant, visit)
    return visit


def set_rating(
    restaurant: Restaurant,
    *,
    visit_number: int,
    participant: Member,
    acting: Member,
    rating: object,
    review_text: str | None = None,
) -> Visit:
    """Set one participant's rating and rebuild both averages.

    Only the participant may rate themselves; admins get no exemption here.
    Nothing on the restaurant changes unless every check passes.
    """
    value = validate_rating(rating)

    visit = restaurant.visit(visit_number)
    if visit is None:
        raise NotFoundError(f"Visit #{visit_number} not found for {restaurant.name}.")

    entry = visit.participant(participant.id)
    if entry is None:
        raise NotFoundError(
            f"'{participant.name}' is not a participant of visit #{visit_number}."
        )

    if acting.id != participant.id:
        raise ForbiddenError("Members may only set their own rating.")

    entry.rating = value
    if review_text is not None:
        entry.review_text = review_text
    recompute(restaurant, visit)
    return visit
