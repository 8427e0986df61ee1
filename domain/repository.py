"""SQL persistence for members, restaurants and plans.

A restaurant is stored across three tables (restaurants, visits,
participants) and loaded as one aggregate. Writes only touch the rows they
change, and the stored averages are rebuilt from the stored ratings inside
the same transaction, so a write based on an outdated copy cannot undo
another one.
"""
import contextlib
from datetime import date, datetime
import json
import logging
import sqlite3
from typing import AsyncIterator, Iterable, Mapping

from databases import Database
from databases.interfaces import Record

from domain import ledger
from domain.errors import ConflictError, InfrastructureError
from domain.models import (
    Member,
    Participant,
    PlannedRestaurant,
    Restaurant,
    Role,
    Schedule,
    ScheduleParticipant,
    Visit,
)


logger = logging.getLogger(__name__)


CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS members (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(128) NOT NULL UNIQUE,
        nickname VARCHAR(128) NOT NULL DEFAULT '',
        image_url VARCHAR(1024) NOT NULL DEFAULT '',
        email VARCHAR(256) NOT NULL UNIQUE,
        password_hash VARCHAR(256) NOT NULL,
        role VARCHAR(16) NOT NULL DEFAULT 'user',
        created_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS restaurants (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(256) NOT NULL UNIQUE,
        location VARCHAR(512) NOT NULL,
        banner_image_url VARCHAR(1024) NOT NULL,
        rating_average REAL NOT NULL DEFAULT 0
            CHECK (rating_average >= 0 AND rating_average <= 5),
        tags TEXT NOT NULL DEFAULT '[]',
        last_visited VARCHAR(10),
        created_by VARCHAR(64),
        created_at VARCHAR(64) NOT NULL,
        updated_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS visits (
        restaurant_id VARCHAR(64) NOT NULL,
        visit_number INTEGER NOT NULL,
        visit_date VARCHAR(10) NOT NULL,
        rating_average REAL NOT NULL DEFAULT 0,
        PRIMARY KEY (restaurant_id, visit_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS participants (
        restaurant_id VARCHAR(64) NOT NULL,
        visit_number INTEGER NOT NULL,
        position INTEGER NOT NULL,
        member_id VARCHAR(64),
        rating REAL CHECK (rating IS NULL OR (rating >= 0 AND rating <= 5)),
        review_text TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (restaurant_id, visit_number, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS planned_restaurants (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(256) NOT NULL,
        location VARCHAR(512) NOT NULL,
        banner_image_url VARCHAR(1024) NOT NULL,
        recommended_by VARCHAR(64),
        recommendation_comment TEXT NOT NULL DEFAULT '',
        created_at VARCHAR(64) NOT NULL,
        UNIQUE (name, location)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schedules (
        id VARCHAR(64) PRIMARY KEY,
        planned_id VARCHAR(64) NOT NULL,
        title VARCHAR(256) NOT NULL,
        organizer_id VARCHAR(64),
        date_time VARCHAR(64) NOT NULL,
        special_notes TEXT NOT NULL DEFAULT '',
        created_at VARCHAR(64) NOT NULL,
        updated_at VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schedule_participants (
        schedule_id VARCHAR(64) NOT NULL,
        member_id VARCHAR(64) NOT NULL,
        joined_at VARCHAR(64) NOT NULL,
        PRIMARY KEY (schedule_id, member_id)
    )
    """,
)


CREATE_MEMBER = """
INSERT INTO members (id, name, nickname, image_url, email, password_hash, role, created_at)
VALUES (:id, :name, :nickname, :image_url, :email, :password_hash, :role, :created_at)
"""
UPDATE_MEMBER = """
UPDATE members SET nickname = :nickname, image_url = :image_url WHERE id = :id
"""
GET_MEMBER = "SELECT * FROM members WHERE id = :id"
GET_MEMBER_BY_NAME = "SELECT * FROM members WHERE name = :name"
GET_MEMBER_BY_EMAIL = "SELECT * FROM members WHERE email = :email"
LIST_MEMBERS = "SELECT * FROM members ORDER BY created_at"
DELETE_MEMBER = "DELETE FROM members WHERE id = :id"

RELEASE_MEMBER_REFERENCES = (
    "UPDATE participants SET member_id = NULL WHERE member_id = :id",
    "UPDATE restaurants SET created_by = NULL WHERE created_by = :id",
    "UPDATE planned_restaurants SET recommended_by = NULL WHERE recommended_by = :id",
    "UPDATE schedules SET organizer_id = NULL WHERE organizer_id = :id",
    "DELETE FROM schedule_participants WHERE member_id = :id",
)


CREATE_RESTAURANT = """
INSERT INTO restaurants (
    id, name, location, banner_image_url, rating_average, tags,
    last_visited, created_by, created_at, updated_at
)
VALUES (
    :id, :name, :location, :banner_image_url, :rating_average, :tags,
    :last_visited, :created_by, :created_at, :updated_at
)
"""
UPDATE_RESTAURANT_METADATA = """
UPDATE restaurants
SET name = :name, location = :location, banner_image_url = :banner_image_url,
    tags = :tags, updated_at = :updated_at
WHERE id = :id
"""
UPDATE_RESTAURANT_ON_REVISIT = """
UPDATE restaurants
SET banner_image_url = :banner_image_url, tags = :tags, updated_at = :updated_at,
    last_visited = CASE
        WHEN last_visited IS NULL OR last_visited < :last_visited THEN :last_visited
        ELSE last_visited
    END
WHERE id = :id
"""
UPDATE_RESTAURANT_AVERAGE = """
UPDATE restaurants SET rating_average = :rating_average WHERE id = :id
"""
TOUCH_RESTAURANT = "UPDATE restaurants SET updated_at = :updated_at WHERE id = :id"
GET_RESTAURANT = "SELECT * FROM restaurants WHERE id = :id"
FIND_RESTAURANT = "SELECT * FROM restaurants WHERE name = :name AND location = :location"
LIST_RESTAURANTS = (
    "SELECT * FROM restaurants ORDER BY last_visited DESC, created_at DESC"
)
DELETE_RESTAURANT = "DELETE FROM restaurants WHERE id = :id"

CREATE_VISIT = """
INSERT INTO visits (restaurant_id, visit_number, visit_date, rating_average)
VALUES (:restaurant_id, :visit_number, :visit_date, :rating_average)
"""
UPDATE_VISIT_AVERAGE = """
UPDATE visits SET rating_average = :rating_average
WHERE restaurant_id = :restaurant_id AND visit_number = :visit_number
"""
GET_VISITS = "SELECT * FROM visits WHERE restaurant_id = :restaurant_id ORDER BY visit_number"
LIST_VISITS = "SELECT * FROM visits ORDER BY restaurant_id, visit_number"
DELETE_VISITS = "DELETE FROM visits WHERE restaurant_id = :restaurant_id"

CREATE_PARTICIPANT = """
INSERT INTO participants (restaurant_id, visit_number, position, member_id, rating, review_text)
VALUES (:restaurant_id, :visit_number, :position, :member_id, :rating, :review_text)
"""
UPDATE_PARTICIPANT = """
UPDATE participants
SET rating = :rating, review_text = COALESCE(:review_text, review_text)
WHERE restaurant_id = :restaurant_id AND visit_number = :visit_number
    AND member_id = :member_id
"""
GET_RATINGS = """
SELECT visit_number, rating FROM participants WHERE restaurant_id = :restaurant_id
"""
GET_PARTICIPANTS = """
SELECT * FROM participants WHERE restaurant_id = :restaurant_id
ORDER BY visit_number, position
"""
LIST_PARTICIPANTS = "SELECT * FROM participants ORDER BY restaurant_id, visit_number, position"
DELETE_PARTICIPANTS = "DELETE FROM participants WHERE restaurant_id = :restaurant_id"


CREATE_PLANNED = """
INSERT INTO planned_restaurants (
    id, name, location, banner_image_url, recommended_by, recommendation_comment, created_at
)
VALUES (
    :id, :name, :location, :banner_image_url, :recommended_by, :recommendation_comment, :created_at
)
"""
GET_PLANNED = "SELECT * FROM planned_restaurants WHERE id = :id"
LIST_PLANNED = "SELECT * FROM planned_restaurants ORDER BY created_at DESC"
DELETE_PLANNED = "DELETE FROM planned_restaurants WHERE id = :id"


CREATE_SCHEDULE = """
INSERT INTO schedules (
    id, planned_id, title, organizer_id, date_time, special_notes, created_at, updated_at
)
VALUES (
    :id, :planned_id, :title, :organizer_id, :date_time, :special_notes, :created_at, :updated_at
)
"""
TOUCH_SCHEDULE = "UPDATE schedules SET updated_at = :updated_at WHERE id = :id"
GET_SCHEDULE = "SELECT * FROM schedules WHERE id = :id"
LIST_SCHEDULES = "SELECT * FROM schedules ORDER BY date_time"
CREATE_SCHEDULE_PARTICIPANT = """
INSERT INTO schedule_participants (schedule_id, member_id, joined_at)
VALUES (:schedule_id, :member_id, :joined_at)
"""
DELETE_SCHEDULE_PARTICIPANT = """
DELETE FROM schedule_participants WHERE schedule_id = :schedule_id AND member_id = :member_id
"""
GET_SCHEDULE_PARTICIPANTS = """
SELECT * FROM schedule_participants WHERE schedule_id = :schedule_id ORDER BY joined_at
"""


async def create_tables(db: Database) -> None:
    for statement in CREATE_TABLES:
        await db.execute(query=statement)  # pyright: ignore[reportUnknownMemberType]


@contextlib.asynccontextmanager
async def storage_errors(conflict: str) -> AsyncIterator[None]:
    """Translate driver errors into domain errors.

    Unique violations become `ConflictError(conflict)`, anything else the
    driver raises becomes `InfrastructureError`.
    """
    try:
        yield
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise ConflictError(conflict) from e
        raise InfrastructureError(f"Storage rejected the write: {e}") from e
    except sqlite3.Error as e:
        raise InfrastructureError(f"Storage failure: {e}") from e


def _member_from_record(r: Record) -> Member:
    return Member(
        id=r["id"],
        name=r["name"],
        nickname=r["nickname"],
        image_url=r["image_url"],
        email=r["email"],
        password_hash=r["password_hash"],
        role=Role(r["role"]),
        created_at=r["created_at"],
    )


class MemberRepository:
    """Member directory."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, member: Member) -> Member:
        async with storage_errors("Name or email already exists."):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_MEMBER,
                values={
                    "id": member.id,
                    "name": member.name,
                    "nickname": member.nickname,
                    "image_url": member.image_url,
                    "email": member.email,
                    "password_hash": member.password_hash,
                    "role": member.role.value,
                    "created_at": member.created_at,
                },
            )
        return member

    async def update(self, member: Member) -> Member:
        async with storage_errors("Member conflicts with an existing member."):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                UPDATE_MEMBER,
                values={
                    "id": member.id,
                    "nickname": member.nickname,
                    "image_url": member.image_url,
                },
            )
        return member

    async def _one(self, query: str, values: dict[str, str]) -> Member | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            query, values=values
        )
        return None if result is None else _member_from_record(result)

    async def get(self, id: str) -> Member | None:
        return await self._one(GET_MEMBER, {"id": id})

    async def get_by_name(self, name: str) -> Member | None:
        return await self._one(GET_MEMBER_BY_NAME, {"name": name})

    async def get_by_email(self, email: str) -> Member | None:
        return await self._one(GET_MEMBER_BY_EMAIL, {"email": email})

    async def list(self) -> tuple[Member, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_MEMBERS
        )
        return tuple(_member_from_record(r) for r in result)

    async def by_id(self) -> dict[str, Member]:
        return {m.id: m for m in await self.list()}

    async def release_references(self, id: str) -> None:
        """Point every reference to the member at the null sentinel."""
        async with storage_errors("Could not release member references."):
            async with self.db.transaction():
                for statement in RELEASE_MEMBER_REFERENCES:
                    await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                        statement, values={"id": id}
                    )

    async def delete(self, id: str) -> bool:
        async with storage_errors("Could not delete member."):
            async with self.db.transaction():
                if await self.get(id) is None:
                    return False
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_MEMBER, values={"id": id}
                )
        return True


def _restaurant_values(restaurant: Restaurant) -> dict[str, object]:
    return {
        "id": restaurant.id,
        "name": restaurant.name,
        "location": restaurant.location,
        "banner_image_url": restaurant.banner_image_url,
        "rating_average": restaurant.rating_average,
        "tags": json.dumps(restaurant.tags),
        "last_visited": (
            None
            if restaurant.last_visited is None
            else restaurant.last_visited.isoformat()
        ),
        "updated_at": restaurant.updated_at,
    }


def _assemble(
    r: Record,
    visit_rows: Iterable[Record],
    participant_rows: Iterable[Record],
    members: Mapping[str, Member],
) -> Restaurant:
    participants: dict[int, list[Participant]] = {}
    for p in participant_rows:
        member_id = p["member_id"]
        participants.setdefault(p["visit_number"], []).append(
            Participant(
                member_id=member_id,
                rating=p["rating"],
                review_text=p["review_text"],
                member=None if member_id is None else members.get(member_id),
            )
        )
    visits = [
        Visit(
            number=v["visit_number"],
            visit_date=date.fromisoformat(v["visit_date"]),
            participants=participants.get(v["visit_number"], []),
            rating_average=v["rating_average"],
        )
        for v in visit_rows
    ]
    created_by = r["created_by"]
    return Restaurant(
        id=r["id"],
        name=r["name"],
        location=r["location"],
        banner_image_url=r["banner_image_url"],
        rating_average=r["rating_average"],
        tags=json.loads(r["tags"]),
        last_visited=(
            None if r["last_visited"] is None else date.fromisoformat(r["last_visited"])
        ),
        created_by=created_by,
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        visits=visits,
        creator=None if created_by is None else members.get(created_by),
    )


class RestaurantRepository:
    """Restaurant registry and the visit ledgers embedded in it."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.members = MemberRepository(db)

    async def _load(self, result: Record | None) -> Restaurant | None:
        if result is None:
            return None
        values = {"restaurant_id": result["id"]}
        visit_rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            GET_VISITS, values=values
        )
        participant_rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            GET_PARTICIPANTS, values=values
        )
        return _assemble(result, visit_rows, participant_rows, await self.members.by_id())

    async def get(self, id: str) -> Restaurant | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_RESTAURANT, values={"id": id}
        )
        return await self._load(result)

    async def find(self, name: str, location: str) -> Restaurant | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            FIND_RESTAURANT, values={"name": name, "location": location}
        )
        return await self._load(result)

    async def list(self) -> tuple[Restaurant, ...]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_RESTAURANTS
        )
        visit_rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_VISITS
        )
        participant_rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_PARTICIPANTS
        )
        members = await self.members.by_id()

        visits: dict[str, list[Record]] = {}
        for v in visit_rows:
            visits.setdefault(v["restaurant_id"], []).append(v)
        participants: dict[str, list[Record]] = {}
        for p in participant_rows:
            participants.setdefault(p["restaurant_id"], []).append(p)

        return tuple(
            _assemble(r, visits.get(r["id"], []), participants.get(r["id"], []), members)
            for r in rows
        )

    async def _insert_visit(self, restaurant_id: str, visit: Visit) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_VISIT,
            values={
                "restaurant_id": restaurant_id,
                "visit_number": visit.number,
                "visit_date": visit.visit_date.isoformat(),
                "rating_average": visit.rating_average,
            },
        )
        for position, participant in enumerate(visit.participants):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_PARTICIPANT,
                values={
                    "restaurant_id": restaurant_id,
                    "visit_number": visit.number,
                    "position": position,
                    "member_id": participant.member_id,
                    "rating": participant.rating,
                    "review_text": participant.review_text,
                },
            )

    async def add(self, restaurant: Restaurant) -> None:
        async with storage_errors(f"Restaurant '{restaurant.name}' already exists."):
            async with self.db.transaction():
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    CREATE_RESTAURANT,
                    values={
                        **_restaurant_values(restaurant),
                        "created_by": restaurant.created_by,
                        "created_at": restaurant.created_at,
                    },
                )
                for visit in restaurant.visits:
                    await self._insert_visit(restaurant.id, visit)

    async def add_visit(self, restaurant: Restaurant, visit: Visit) -> None:
        """Write a newly appended visit and the restaurant fields it changed.

        Two concurrent revisits compute the same visit number; the primary key
        on visits lets exactly one of them through.
        """
        async with storage_errors(
            f"Visit #{visit.number} of '{restaurant.name}' was recorded concurrently."
        ):
            async with self.db.transaction():
                await self._insert_visit(restaurant.id, visit)
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    UPDATE_RESTAURANT_ON_REVISIT,
                    values={
                        "id": restaurant.id,
                        "banner_image_url": restaurant.banner_image_url,
                        "tags": json.dumps(restaurant.tags),
                        "last_visited": visit.visit_date.isoformat(),
                        "updated_at": restaurant.updated_at,
                    },
                )
                await self._refresh_averages(restaurant.id)

    async def _refresh_averages(self, restaurant_id: str) -> None:
        """Rebuild every stored average of a restaurant from its stored ratings.

        Must run inside the transaction that changed the ratings.
        """
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            GET_RATINGS, values={"restaurant_id": restaurant_id}
        )
        by_visit: dict[int, list[float | None]] = {}
        for r in rows:
            by_visit.setdefault(r["visit_number"], []).append(r["rating"])
        for number, ratings in by_visit.items():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                UPDATE_VISIT_AVERAGE,
                values={
                    "restaurant_id": restaurant_id,
                    "visit_number": number,
                    "rating_average": ledger.compute_average(ratings),
                },
            )
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_RESTAURANT_AVERAGE,
            values={
                "id": restaurant_id,
                "rating_average": ledger.compute_average(r["rating"] for r in rows),
            },
        )

    async def save_rating(
        self,
        restaurant: Restaurant,
        visit: Visit,
        participant: Participant,
        *,
        review_changed: bool = True,
    ) -> None:
        """Write one participant's rating, leaving the other rows alone."""
        async with storage_errors("Could not save rating."):
            async with self.db.transaction():
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    UPDATE_PARTICIPANT,
                    values={
                        "restaurant_id": restaurant.id,
                        "visit_number": visit.number,
                        "member_id": participant.member_id,
                        "rating": participant.rating,
                        "review_text": participant.review_text if review_changed else None,
                    },
                )
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    TOUCH_RESTAURANT,
                    values={"id": restaurant.id, "updated_at": restaurant.updated_at},
                )
                await self._refresh_averages(restaurant.id)

    async def update(self, restaurant: Restaurant) -> None:
        """Write the editable fields only. Averages and visits are not touched."""
        async with storage_errors(f"Restaurant '{restaurant.name}' already exists."):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                UPDATE_RESTAURANT_METADATA,
                values={
                    "id": restaurant.id,
                    "name": restaurant.name,
                    "location": restaurant.location,
                    "banner_image_url": restaurant.banner_image_url,
                    "tags": json.dumps(restaurant.tags),
                    "updated_at": restaurant.updated_at,
                },
            )

    async def delete(self, id: str) -> bool:
        """Hard delete. False when there was nothing left to delete."""
        async with storage_errors("Could not delete restaurant."):
            async with self.db.transaction():
                found = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                    GET_RESTAURANT, values={"id": id}
                )
                if found is None:
                    return False
                values = {"restaurant_id": id}
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_PARTICIPANTS, values=values
                )
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_VISITS, values=values
                )
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_RESTAURANT, values={"id": id}
                )
        return True


def _planned_from_record(r: Record, members: Mapping[str, Member]) -> PlannedRestaurant:
    recommended_by = r["recommended_by"]
    return PlannedRestaurant(
        id=r["id"],
        name=r["name"],
        location=r["location"],
        banner_image_url=r["banner_image_url"],
        recommended_by=recommended_by,
        recommendation_comment=r["recommendation_comment"],
        created_at=r["created_at"],
        recommender=None if recommended_by is None else members.get(recommended_by),
    )


class PlannedRestaurantRepository:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.members = MemberRepository(db)

    async def add(self, planned: PlannedRestaurant) -> None:
        async with storage_errors(
            f"'{planned.name}' ({planned.location}) is already planned."
        ):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_PLANNED,
                values={
                    "id": planned.id,
                    "name": planned.name,
                    "location": planned.location,
                    "banner_image_url": planned.banner_image_url,
                    "recommended_by": planned.recommended_by,
                    "recommendation_comment": planned.recommendation_comment,
                    "created_at": planned.created_at,
                },
            )

    async def get(self, id: str) -> PlannedRestaurant | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_PLANNED, values={"id": id}
        )
        if result is None:
            return None
        return _planned_from_record(result, await self.members.by_id())

    async def list(self) -> tuple[PlannedRestaurant, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_PLANNED
        )
        members = await self.members.by_id()
        return tuple(_planned_from_record(r, members) for r in result)

    async def delete(self, id: str) -> bool:
        async with storage_errors("Could not delete planned restaurant."):
            async with self.db.transaction():
                found = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                    GET_PLANNED, values={"id": id}
                )
                if found is None:
                    return False
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_PLANNED, values={"id": id}
                )
        return True


class ScheduleRepository:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.members = MemberRepository(db)
        self.planned = PlannedRestaurantRepository(db)

    async def add(self, schedule: Schedule) -> None:
        async with storage_errors("Schedule already exists."):
            async with self.db.transaction():
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    CREATE_SCHEDULE,
                    values={
                        "id": schedule.id,
                        "planned_id": schedule.planned_id,
                        "title": schedule.title,
                        "organizer_id": schedule.organizer_id,
                        "date_time": schedule.date_time.isoformat(),
                        "special_notes": schedule.special_notes,
                        "created_at": schedule.created_at,
                        "updated_at": schedule.updated_at,
                    },
                )
                for participant in schedule.participants:
                    await self._insert_participant(schedule.id, participant)

    async def _insert_participant(
        self, schedule_id: str, participant: ScheduleParticipant
    ) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_SCHEDULE_PARTICIPANT,
            values={
                "schedule_id": schedule_id,
                "member_id": participant.member_id,
                "joined_at": participant.joined_at,
            },
        )

    async def add_participant(
        self, schedule: Schedule, participant: ScheduleParticipant
    ) -> None:
        async with storage_errors("Already taking part in this schedule."):
            async with self.db.transaction():
                await self._insert_participant(schedule.id, participant)
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    TOUCH_SCHEDULE,
                    values={"id": schedule.id, "updated_at": schedule.updated_at},
                )

    async def remove_participant(self, schedule: Schedule, member_id: str) -> None:
        async with storage_errors("Could not leave schedule."):
            async with self.db.transaction():
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    DELETE_SCHEDULE_PARTICIPANT,
                    values={"schedule_id": schedule.id, "member_id": member_id},
                )
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    TOUCH_SCHEDULE,
                    values={"id": schedule.id, "updated_at": schedule.updated_at},
                )

    async def _load(self, r: Record, members: Mapping[str, Member]) -> Schedule:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            GET_SCHEDULE_PARTICIPANTS, values={"schedule_id": r["id"]}
        )
        organizer_id = r["organizer_id"]
        return Schedule(
            id=r["id"],
            planned_id=r["planned_id"],
            title=r["title"],
            organizer_id=organizer_id,
            date_time=datetime.fromisoformat(r["date_time"]),
            special_notes=r["special_notes"],
            created_at=r["created_at"],
            updated_at=r["updated_at"],
            participants=[
                ScheduleParticipant(
                    member_id=p["member_id"],
                    joined_at=p["joined_at"],
                    member=members.get(p["member_id"]),
                )
                for p in rows
            ],
            planned=await self.planned.get(r["planned_id"]),
            organizer=None if organizer_id is None else members.get(organizer_id),
        )

    async def get(self, id: str) -> Schedule | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_SCHEDULE, values={"id": id}
        )
        if result is None:
            return None
        return await self._load(result, await self.members.by_id())

    async def list(self) -> tuple[Schedule, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_SCHEDULES
        )
        members = await self.members.by_id()
        return tuple([await self._load(r, members) for r in result])
