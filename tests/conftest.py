from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Iterator, TypeAlias

from databases import Database
import pytest
import pytest_asyncio
from starlette.testclient import TestClient

from app.app import create_app
from app.config import Config
from domain.auth import hash_password
from domain.blobstore import LocalBlobStore
from domain.models import Member, Role
from domain.repository import (
    MemberRepository,
    PlannedRestaurantRepository,
    RestaurantRepository,
    ScheduleRepository,
    create_tables,
)


MakeMember: TypeAlias = Callable[..., Awaitable[Member]]


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ramen.db'}")
    await database.connect()
    await create_tables(database)
    yield database
    await database.disconnect()


@pytest.fixture
def members(db: Database) -> MemberRepository:
    return MemberRepository(db)


@pytest.fixture
def restaurants(db: Database) -> RestaurantRepository:
    return RestaurantRepository(db)


@pytest.fixture
def planned(db: Database) -> PlannedRestaurantRepository:
    return PlannedRestaurantRepository(db)


@pytest.fixture
def schedules(db: Database) -> ScheduleRepository:
    return ScheduleRepository(db)


@pytest.fixture
def blobs(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(directory=tmp_path / "uploads", base_url="/uploads")


@pytest.fixture
def make_member(members: MemberRepository) -> MakeMember:
    async def make(name: str, *, role: Role = Role.user) -> Member:
        member = Member(
            id=f"id-{name.lower()}",
            name=name,
            email=f"{name.lower()}@ramen.road",
            password_hash=hash_password("noodles"),
            role=role,
        )
        return await members.add(member)

    return make


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        secret_key="test-secret",
        uploads_dir=tmp_path / "uploads",
        admin_emails=["boss@ramen.road"],
    )


@pytest.fixture
def client(config: Config) -> Iterator[TestClient]:
    with TestClient(create_app(config)) as client:
        yield client
