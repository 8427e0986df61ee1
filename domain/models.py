from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Role(Enum):
    user = "user"
    admin = "admin"


class Member:
    def __init__(
        self,
        *,
        id: str,
        name: str,
        email: str,
        password_hash: str,
        nickname: str = "",
        image_url: str = "",
        role: Role = Role.user,
        created_at: str = "",
    ) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.password_hash = password_hash
        self.nickname = nickname
        self.image_url = image_url
        self.role = role
        self.created_at = created_at or utcnow()

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name={self.name})>"

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin

    def summary(self) -> dict[str, str]:
        """Display fields used wherever another record points at a member."""
        return {
            "id": self.id,
            "name": self.name,
            "nickname": self.nickname,
            "imageUrl": self.image_url,
        }

    def to_dict(self) -> dict[str, str]:
        return {
            **self.summary(),
            "email": self.email,
            "role": self.role.value,
            "createdAt": self.created_at,
        }


def member_summary(member: Member | None) -> dict[str, str] | None:
    return None if member is None else member.summary()


class Participant:
    """One member's rating entry within a visit.

    `member_id` is None once the member has been deleted. The rating stays and
    still counts towards the averages.
    """

    def __init__(
        self,
        *,
        member_id: str | None,
        rating: float | None = None,
        review_text: str = "",
        member: Member | None = None,
    ) -> None:
        self.member_id = member_id
        self.rating = rating
        self.review_text = review_text
        self.member = member

    def __repr__(self) -> str:
        return f"<Participant(member_id={self.member_id}, rating={self.rating})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "member": member_summary(self.member),
            "rating": self.rating,
            "reviewText": self.review_text,
        }


class Visit:
    def __init__(
        self,
        *,
        number: int,
        visit_date: date,
        participants: list[Participant],
        rating_average: float = 0.0,
    ) -> None:
        self.number = number
        self.visit_date = visit_date
        self.participants = participants
        self.rating_average = rating_average

    def __repr__(self) -> str:
        return f"<Visit(number={self.number}, visit_date={self.visit_date})>"

    def participant(self, member_id: str) -> Participant | None:
        for participant in self.participants:
            if participant.member_id is not None and participant.member_id == member_id:
                return participant
        return None

    def ratings(self) -> list[float | None]:
        return [p.rating for p in self.participants]

    def to_dict(self) -> dict[str, Any]:
        return {
            "visitCount": self.number,
            "visitDate": self.visit_date.isoformat(),
            "ratingAverage": self.rating_average,
            "members": [p.to_dict() for p in self.participants],
        }


class Restaurant:
    def __init__(
        self,
        *,
        id: str,
        name: str,
        location: str,
        created_by: str | None,
        banner_image_url: str,
        rating_average: float = 0.0,
        visits: list[Visit] | None = None,
        tags: list[str] | None = None,
        last_visited: date | None = None,
        created_at: str = "",
        updated_at: str = "",
        creator: Member | None = None,
    ) -> None:
        self.id = id
        self.name = name
        self.location = location
        self.created_by = created_by
        self.banner_image_url = banner_image_url
        self.rating_average = rating_average
        self.visits: list[Visit] = [] if visits is None else visits
        self.tags: list[str] = [] if tags is None else tags
        self.last_visited = last_visited
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        self.creator = creator

    def __repr__(self) -> str:
        return f"<Restaurant(id={self.id}, name={self.name})>"

    def visit(self, number: int) -> Visit | None:
        for visit in self.visits:
            if visit.number == number:
                return visit
        return None

    def ratings(self) -> list[float | None]:
        return [r for visit in self.visits for r in visit.ratings()]

    def can_be_managed_by(self, member: Member) -> bool:
        return member.is_admin or (
            self.created_by is not None and self.created_by == member.id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "bannerImageUrl": self.banner_image_url,
            "ratingAverage": self.rating_average,
            "tags": list(self.tags),
            "lastVisited": (
                None if self.last_visited is None else self.last_visited.isoformat()
            ),
            "createdBy": member_summary(self.creator),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "visits": [v.to_dict() for v in self.visits],
        }


class PlannedRestaurant:
    def __init__(
        self,
        *,
        id: str,
        name: str,
        location: str,
        banner_image_url: str,
        recommended_by: str | None,
        recommendation_comment: str = "",
        created_at: str = "",
        recommender: Member | None = None,
    ) -> None:
        self.id = id
        self.name = name
        self.location = location
        self.banner_image_url = banner_image_url
        self.recommended_by = recommended_by
        self.recommendation_comment = recommendation_comment
        self.created_at = created_at or utcnow()
        self.recommender = recommender

    def __repr__(self) -> str:
        return f"<PlannedRestaurant(id={self.id}, name={self.name})>"

    def summary(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "bannerImageUrl": self.banner_image_url,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary(),
            "recommendedBy": member_summary(self.recommender),
            "recommendationComment": self.recommendation_comment,
            "createdAt": self.created_at,
        }


class ScheduleParticipant:
    def __init__(
        self, *, member_id: str, joined_at: str = "", member: Member | None = None
    ) -> None:
        self.member_id = member_id
        self.joined_at = joined_at or utcnow()
        self.member = member

    def to_dict(self) -> dict[str, Any]:
        return {"member": member_summary(self.member), "joinedAt": self.joined_at}


class Schedule:
    def __init__(
        self,
        *,
        id: str,
        planned_id: str,
        title: str,
        organizer_id: str | None,
        date_time: datetime,
        special_notes: str = "",
        participants: list[ScheduleParticipant] | None = None,
        created_at: str = "",
        updated_at: str = "",
        planned: PlannedRestaurant | None = None,
        organizer: Member | None = None,
    ) -> None:
        self.id = id
        self.planned_id = planned_id
        self.title = title
        self.organizer_id = organizer_id
        self.date_time = date_time
        self.special_notes = special_notes
        self.participants: list[ScheduleParticipant] = (
            [] if participants is None else participants
        )
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        self.planned = planned
        self.organizer = organizer

    def __repr__(self) -> str:
        return f"<Schedule(id={self.id}, title={self.title})>"

    def has_participant(self, member_id: str) -> bool:
        return any(p.member_id == member_id for p in self.participants)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plannedRamen": None if self.planned is None else self.planned.summary(),
            "title": self.title,
            "organizer": member_summary(self.organizer),
            "dateTime": self.date_time.isoformat(),
            "specialNotes": self.special_notes,
            "participants": [p.to_dict() for p in self.participants],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
