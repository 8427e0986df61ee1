from datetime import datetime
from typing import Awaitable, Callable

import pytest

from domain import services
from domain.blobstore import LocalBlobStore
from domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from domain.models import Member, Role
from domain.repository import (
    MemberRepository,
    PlannedRestaurantRepository,
    ScheduleRepository,
)


MakeMember = Callable[..., Awaitable[Member]]


@pytest.mark.asyncio
async def test_planned_entries_are_unique_per_location(
    planned: PlannedRestaurantRepository, blobs: LocalBlobStore, make_member: MakeMember
) -> None:
    a = await make_member("Alice")
    entry = await services.add_planned(
        name="Afuri", location="Ebisu", comment="Yuzu shio!", acting=a, planned=planned, blobs=blobs
    )
    assert entry.recommender is not None and entry.recommender.name == "Alice"
    assert entry.to_dict()["recommendationComment"] == "Yuzu shio!"

    with pytest.raises(ConflictError):
        await services.add_planned(
            name="Afuri", location="Ebisu", acting=a, planned=planned, blobs=blobs
        )
    await services.add_planned(
        name="Afuri", location="Harajuku", acting=a, planned=planned, blobs=blobs
    )
    assert len(await planned.list()) == 2

    with pytest.raises(ValidationError):
        await services.add_planned(name="", location="Ebisu", acting=a, planned=planned, blobs=blobs)


@pytest.mark.asyncio
async def test_planned_delete_rules(
    planned: PlannedRestaurantRepository, blobs: LocalBlobStore, make_member: MakeMember
) -> None:
    a = await make_member("Alice")
    b = await make_member("Bob")
    admin = await make_member("Boss", role=Role.admin)
    first = await services.add_planned(
        name="Afuri", location="Ebisu", acting=a, planned=planned, blobs=blobs
    )
    second = await services.add_planned(
        name="Fuunji", location="Shinjuku", acting=a, planned=planned, blobs=blobs
    )

    with pytest.raises(ForbiddenError):
        await services.delete_planned(id=first.id, acting=b, planned=planned)

    await services.delete_planned(id=first.id, acting=a, planned=planned)
    await services.delete_planned(id=second.id, acting=admin, planned=planned)

    with pytest.raises(NotFoundError):
        await services.delete_planned(id=first.id, acting=admin, planned=planned)
    assert await planned.list() == ()


@pytest.mark.asyncio
async def test_schedule_join_and_leave(
    planned: PlannedRestaurantRepository,
    schedules: ScheduleRepository,
    blobs: LocalBlobStore,
    make_member: MakeMember,
) -> None:
    a = await make_member("Alice")
    b = await make_member("Bob")
    entry = await services.add_planned(
        name="Afuri", location="Ebisu", acting=a, planned=planned, blobs=blobs
    )

    schedule = await services.create_schedule(
        planned_id=entry.id,
        title="Yuzu night",
        date_time="2024-07-01T19:00:00",
        special_notes="Meet at the station",
        acting=a,
        schedules=schedules,
    )
    assert schedule.date_time == datetime(2024, 7, 1, 19)
    assert schedule.organizer is not None and schedule.organizer.name == "Alice"
    assert schedule.planned is not None and schedule.planned.name == "Afuri"
    assert [p.member_id for p in schedule.participants] == [a.id]

    schedule = await services.join_schedule(id=schedule.id, acting=b, schedules=schedules)
    assert [p.member_id for p in schedule.participants] == [a.id, b.id]
    with pytest.raises(ConflictError):
        await services.join_schedule(id=schedule.id, acting=b, schedules=schedules)

    schedule = await services.leave_schedule(id=schedule.id, acting=b, schedules=schedules)
    assert [p.member_id for p in schedule.participants] == [a.id]
    with pytest.raises(ValidationError):
        await services.leave_schedule(id=schedule.id, acting=b, schedules=schedules)

    with pytest.raises(NotFoundError):
        await services.join_schedule(id="missing", acting=b, schedules=schedules)


@pytest.mark.asyncio
async def test_schedule_validation(
    schedules: ScheduleRepository, make_member: MakeMember
) -> None:
    a = await make_member("Alice")
    with pytest.raises(NotFoundError):
        await services.create_schedule(
            planned_id="missing",
            title="Lost",
            date_time="2024-07-01T19:00:00",
            acting=a,
            schedules=schedules,
        )
    with pytest.raises(ValidationError):
        await services.create_schedule(
            planned_id="missing", title="", date_time="soon", acting=a, schedules=schedules
        )


@pytest.mark.asyncio
async def test_schedules_are_listed_soonest_first(
    planned: PlannedRestaurantRepository,
    schedules: ScheduleRepository,
    blobs: LocalBlobStore,
    make_member: MakeMember,
) -> None:
    a = await make_member("Alice")
    entry = await services.add_planned(
        name="Afuri", location="Ebisu", acting=a, planned=planned, blobs=blobs
    )
    for title, when in (("Later", "2024-08-01T12:00:00"), ("Sooner", "2024-07-01T12:00:00")):
        await services.create_schedule(
            planned_id=entry.id, title=title, date_time=when, acting=a, schedules=schedules
        )
    assert [s.title for s in await schedules.list()] == ["Sooner", "Later"]


@pytest.mark.asyncio
async def test_deleted_member_leaves_schedules(
    members: MemberRepository,
    planned: PlannedRestaurantRepository,
    schedules: ScheduleRepository,
    blobs: LocalBlobStore,
    make_member: MakeMember,
) -> None:
    a = await make_member("Alice")
    b = await make_member("Bob")
    entry = await services.add_planned(
        name="Afuri", location="Ebisu", acting=a, planned=planned, blobs=blobs
    )
    schedule = await services.create_schedule(
        planned_id=entry.id,
        title="Yuzu night",
        date_time="2024-07-01T19:00:00",
        acting=a,
        schedules=schedules,
    )
    await services.join_schedule(id=schedule.id, acting=b, schedules=schedules)

    await services.delete_member(id=a.id, acting=a, members=members)

    stored = await schedules.get(schedule.id)
    assert stored is not None
    assert stored.organizer_id is None
    assert stored.to_dict()["organizer"] is None
    assert [p.member_id for p in stored.participants] == [b.id]
