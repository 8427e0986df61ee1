"""Operations behind the routes.

Every operation validates and authorizes before it writes anything, so a
failed call leaves storage exactly as it was.
"""
import contextlib
from datetime import date, datetime
import logging
from typing import AsyncIterator, Iterable
import uuid

from domain import ledger
from domain.auth import MIN_PASSWORD_LENGTH, TokenAuthority, hash_password, verify_password
from domain.blobstore import BlobStore, Upload
from domain.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from domain.models import (
    Member,
    PlannedRestaurant,
    Restaurant,
    Role,
    Schedule,
    ScheduleParticipant,
    utcnow,
)
from domain.repository import (
    MemberRepository,
    PlannedRestaurantRepository,
    RestaurantRepository,
    ScheduleRepository,
)


logger = logging.getLogger(__name__)


DEFAULT_BANNER_URL = "/uploads/default-banner.webp"
DEFAULT_PROFILE_IMAGE_URL = "/uploads/default-profile.png"


@contextlib.asynccontextmanager
async def discard_on_conflict(blobs: BlobStore, url: str | None) -> AsyncIterator[None]:
    """Remove a freshly stored upload when the write that would use it conflicts."""
    try:
        yield
    except ConflictError:
        if url is not None:
            try:
                await blobs.delete(url)
            except InfrastructureError:
                logger.warning("Could not remove orphaned upload %s", url)
        raise


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def require(**fields: object) -> dict[str, str]:
    cleaned = {k: _text(v) for k, v in fields.items()}
    missing = [k for k, v in cleaned.items() if not v]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}.")
    return cleaned


def parse_date(value: object, field: str = "visitDate") -> date:
    try:
        return date.fromisoformat(_text(value))
    except ValueError as e:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD).") from e


def parse_datetime(value: object, field: str = "dateTime") -> datetime:
    try:
        return datetime.fromisoformat(_text(value))
    except ValueError as e:
        raise ValidationError(f"{field} must be an ISO date and time.") from e


def clean_tags(tags: object) -> list[str]:
    """Tags are a set, kept in first-seen order."""
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError("tags must be a list of strings.")
    seen: dict[str, None] = {}
    for tag in tags:
        if tag.strip():
            seen.setdefault(tag.strip(), None)
    return list(seen)


def _optional_text(value: object, field: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise ValidationError(f"{field} must be a string.")


async def resolve_members(
    names: Iterable[object], *, members: MemberRepository
) -> list[Member]:
    """Look up every named member, failing on the first unknown name."""
    names = list(names)
    if not names:
        raise ValidationError("At least one member must take part in a visit.")
    if not all(isinstance(n, str) and n.strip() for n in names):
        raise ValidationError("Member names must be non-empty strings.")
    cleaned = [str(n).strip() for n in names]
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("A member can only be listed once per visit.")

    resolved: list[Member] = []
    for name in cleaned:
        member = await members.get_by_name(name)
        if member is None:
            raise ValidationError(f"Unknown member: '{name}'.")
        resolved.append(member)
    return resolved


async def _reload(restaurants: RestaurantRepository, id: str) -> Restaurant:
    restaurant = await restaurants.get(id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found.")
    return restaurant


async def add_visit(
    *,
    name: object,
    location: object,
    visit_date: object,
    member_names: Iterable[object],
    tags: object,
    acting: Member,
    restaurants: RestaurantRepository,
    blobs: BlobStore,
    banner: Upload | None = None,
    default_banner_url: str = DEFAULT_BANNER_URL,
) -> tuple[Restaurant, bool]:
    """Record a visit, creating the restaurant on its first visit.

    Returns the stored restaurant and whether it was newly created.
    """
    fields = require(name=name, location=location, visitDate=visit_date)
    day = parse_date(fields["visitDate"])
    tag_set = clean_tags(tags)
    members = await resolve_members(member_names, members=restaurants.members)
    banner_url = None if banner is None else await blobs.put(banner)

    restaurant = await restaurants.find(fields["name"], fields["location"])

    if restaurant is not None:
        visit = ledger.append_visit(restaurant, visit_date=day, members=members)
        restaurant.tags = tag_set
        if banner_url is not None:
            restaurant.banner_image_url = banner_url
        restaurant.updated_at = utcnow()
        async with discard_on_conflict(blobs, banner_url):
            await restaurants.add_visit(restaurant, visit)
        logger.info("Visit #%s recorded for %s", visit.number, restaurant.name)
        return await _reload(restaurants, restaurant.id), False

    restaurant = Restaurant(
        id=uuid.uuid4().hex,
        name=fields["name"],
        location=fields["location"],
        created_by=acting.id,
        banner_image_url=banner_url or default_banner_url,
        tags=tag_set,
    )
    ledger.append_visit(restaurant, visit_date=day, members=members)
    async with discard_on_conflict(blobs, banner_url):
        await restaurants.add(restaurant)
    logger.info("New restaurant %s created by %s", restaurant.name, acting.name)
    return await _reload(restaurants, restaurant.id), True


async def rate(
    *,
    restaurant_id: str,
    visit_number: int,
    member_name: str,
    rating: object,
    acting: Member,
    restaurants: RestaurantRepository,
    review_text: object = None,
) -> Restaurant:
    ledger.validate_rating(rating)
    review = _optional_text(review_text, "reviewText")

    restaurant = await restaurants.get(restaurant_id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found.")
    participant = await restaurants.members.get_by_name(member_name)
    if participant is None:
        raise NotFoundError(f"'{member_name}' is not a participant of visit #{visit_number}.")

    try:
        visit = ledger.set_rating(
            restaurant,
            visit_number=visit_number,
            participant=participant,
            acting=acting,
            rating=rating,
            review_text=review,
        )
    except ForbiddenError:
        logger.warning(
            "%s tried to rate for %s at %s", acting.name, participant.name, restaurant.name
        )
        raise

    entry = visit.participant(participant.id)
    assert entry is not None
    restaurant.updated_at = utcnow()
    await restaurants.save_rating(
        restaurant, visit, entry, review_changed=review is not None
    )
    logger.info(
        "%s rated visit #%s of %s: %s", acting.name, visit.number, restaurant.name, rating
    )
    return await _reload(restaurants, restaurant.id)


async def _managed_restaurant(
    id: str, *, acting: Member, restaurants: RestaurantRepository
) -> Restaurant:
    restaurant = await restaurants.get(id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found.")
    if not restaurant.can_be_managed_by(acting):
        logger.warning("%s may not manage %s", acting.name, restaurant.name)
        raise ForbiddenError("Only the creator or an admin can change this restaurant.")
    return restaurant


async def delete_restaurant(
    *, id: str, acting: Member, restaurants: RestaurantRepository
) -> None:
    restaurant = await _managed_restaurant(id, acting=acting, restaurants=restaurants)
    if not await restaurants.delete(id):
        raise NotFoundError("Restaurant not found.")
    logger.info("Restaurant %s deleted by %s", restaurant.name, acting.name)


async def update_restaurant(
    *,
    id: str,
    acting: Member,
    restaurants: RestaurantRepository,
    blobs: BlobStore,
    name: object = None,
    location: object = None,
    tags: object = None,
    banner: Upload | None = None,
) -> Restaurant:
    updates: dict[str, str] = {}
    for field, value in (("name", name), ("location", location)):
        if value is not None:
            updates[field] = require(**{field: value})[field]
    tag_set = None if tags is None else clean_tags(tags)

    restaurant = await _managed_restaurant(id, acting=acting, restaurants=restaurants)

    if "name" in updates:
        restaurant.name = updates["name"]
    if "location" in updates:
        restaurant.location = updates["location"]
    if tag_set is not None:
        restaurant.tags = tag_set
    banner_url = None
    if banner is not None:
        banner_url = await blobs.put(banner)
        restaurant.banner_image_url = banner_url
    restaurant.updated_at = utcnow()

    async with discard_on_conflict(blobs, banner_url):
        await restaurants.update(restaurant)
    logger.info("Restaurant %s updated by %s", restaurant.name, acting.name)
    return await _reload(restaurants, restaurant.id)


async def register(
    *,
    name: object,
    email: object,
    password: object,
    members: MemberRepository,
    blobs: BlobStore,
    nickname: object = None,
    profile_image: Upload | None = None,
    admin_emails: Iterable[str] = (),
    default_image_url: str = DEFAULT_PROFILE_IMAGE_URL,
) -> Member:
    fields = require(name=name, email=email, password=password)
    if len(str(password)) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    address = fields["email"].lower()
    admins = {e.strip().lower() for e in admin_emails}

    nick = _optional_text(nickname, "nickname") or ""
    uploaded = None
    if profile_image is not None:
        uploaded = await blobs.put(profile_image)
    member = Member(
        id=uuid.uuid4().hex,
        name=fields["name"],
        nickname=nick,
        email=address,
        image_url=uploaded or default_image_url,
        password_hash=hash_password(str(password)),
        role=Role.admin if address in admins else Role.user,
    )
    async with discard_on_conflict(blobs, uploaded):
        await members.add(member)
    logger.info("Member %s registered as %s", member.name, member.role.value)
    return member


async def login(
    *,
    email: object,
    password: object,
    members: MemberRepository,
    authority: TokenAuthority,
) -> tuple[str, Member]:
    fields = require(email=email, password=password)
    member = await members.get_by_email(fields["email"].lower())
    if member is None or not verify_password(str(password), member.password_hash):
        raise AuthenticationError("Email or password is incorrect.")
    return authority.issue(member), member


async def update_profile(
    *,
    id: str,
    acting: Member,
    members: MemberRepository,
    blobs: BlobStore,
    nickname: object = None,
    profile_image: Upload | None = None,
) -> Member:
    nick = _optional_text(nickname, "nickname")
    member = await members.get(id)
    if member is None:
        raise NotFoundError("Member not found.")
    if member.id != acting.id:
        raise ForbiddenError("Members may only edit their own profile.")
    if nick is not None:
        member.nickname = nick.strip()
    if profile_image is not None:
        member.image_url = await blobs.put(profile_image)
    return await members.update(member)


async def delete_member(*, id: str, acting: Member, members: MemberRepository) -> None:
    """Delete an account, anonymising everything that pointed at it first.

    If removing the member fails after the references were released, the
    history is left anonymised and the member still exists; a retry finishes
    the job.
    """
    if id != acting.id:
        logger.warning("%s tried to delete member %s", acting.name, id)
        raise ForbiddenError("Members may only delete their own account.")
    member = await members.get(id)
    if member is None:
        raise NotFoundError("Member not found.")

    await members.release_references(id)
    if not await members.delete(id):
        raise NotFoundError("Member not found.")
    logger.info("Member %s deleted", member.name)


async def add_planned(
    *,
    name: object,
    location: object,
    acting: Member,
    planned: PlannedRestaurantRepository,
    blobs: BlobStore,
    comment: object = None,
    banner: Upload | None = None,
    default_banner_url: str = DEFAULT_BANNER_URL,
) -> PlannedRestaurant:
    fields = require(name=name, location=location)
    remark = _optional_text(comment, "recommendationComment") or ""
    uploaded = None if banner is None else await blobs.put(banner)
    entry = PlannedRestaurant(
        id=uuid.uuid4().hex,
        name=fields["name"],
        location=fields["location"],
        banner_image_url=uploaded or default_banner_url,
        recommended_by=acting.id,
        recommendation_comment=remark,
    )
    async with discard_on_conflict(blobs, uploaded):
        await planned.add(entry)
    logger.info("%s recommended %s", acting.name, entry.name)
    stored = await planned.get(entry.id)
    if stored is None:
        raise NotFoundError("Planned restaurant not found.")
    return stored


async def delete_planned(
    *, id: str, acting: Member, planned: PlannedRestaurantRepository
) -> None:
    """The recommender or an admin may delete; a second delete finds nothing."""
    entry = await planned.get(id)
    if entry is None:
        raise NotFoundError("Planned restaurant not found.")
    if not acting.is_admin and entry.recommended_by != acting.id:
        raise ForbiddenError("Only the recommender or an admin can delete this entry.")
    if not await planned.delete(id):
        raise NotFoundError("Planned restaurant not found.")
    logger.info("Planned restaurant %s deleted by %s", entry.name, acting.name)


async def _schedule(id: str, schedules: ScheduleRepository) -> Schedule:
    schedule = await schedules.get(id)
    if schedule is None:
        raise NotFoundError("Schedule not found.")
    return schedule


async def create_schedule(
    *,
    planned_id: object,
    title: object,
    date_time: object,
    acting: Member,
    schedules: ScheduleRepository,
    special_notes: object = None,
) -> Schedule:
    fields = require(plannedRamenId=planned_id, title=title, dateTime=date_time)
    when = parse_datetime(fields["dateTime"])
    notes = _optional_text(special_notes, "specialNotes") or ""
    if await schedules.planned.get(fields["plannedRamenId"]) is None:
        raise NotFoundError("Planned restaurant not found.")

    schedule = Schedule(
        id=uuid.uuid4().hex,
        planned_id=fields["plannedRamenId"],
        title=fields["title"],
        organizer_id=acting.id,
        date_time=when,
        special_notes=notes,
        participants=[ScheduleParticipant(member_id=acting.id)],
    )
    await schedules.add(schedule)
    logger.info("%s scheduled %s", acting.name, schedule.title)
    return await _schedule(schedule.id, schedules)


async def join_schedule(
    *, id: str, acting: Member, schedules: ScheduleRepository
) -> Schedule:
    schedule = await _schedule(id, schedules)
    if schedule.has_participant(acting.id):
        raise ConflictError("Already taking part in this schedule.")
    schedule.updated_at = utcnow()
    await schedules.add_participant(schedule, ScheduleParticipant(member_id=acting.id))
    logger.info("%s joined %s", acting.name, schedule.title)
    return await _schedule(id, schedules)


async def leave_schedule(
    *, id: str, acting: Member, schedules: ScheduleRepository
) -> Schedule:
    schedule = await _schedule(id, schedules)
    if not schedule.has_participant(acting.id):
        raise ValidationError("Not taking part in this schedule.")
    schedule.updated_at = utcnow()
    await schedules.remove_participant(schedule, acting.id)
    logger.info("%s left %s", acting.name, schedule.title)
    return await _schedule(id, schedules)
