from datetime import date

import pytest

from domain import ledger
from domain.errors import ForbiddenError, NotFoundError, ValidationError
from domain.models import Member, Restaurant, Role


def member(name: str, role: Role = Role.user) -> Member:
    return Member(
        id=f"id-{name}", name=name, email=f"{name}@ramen.road", password_hash="x", role=role
    )


A = member("a")
B = member("b")
C = member("c")


def ichiran() -> Restaurant:
    restaurant = Restaurant(
        id="r1",
        name="Ichiran",
        location="Shibuya",
        created_by=A.id,
        banner_image_url="/banner.webp",
    )
    ledger.append_visit(restaurant, visit_date=date(2024, 5, 1), members=[A, B])
    return restaurant


@pytest.mark.parametrize(
    "ratings,expected",
    (
        ([], 0.0),
        ([None, None], 0.0),
        ([4], 4.0),
        ([4, None, 2], 3.0),
        ([0, 5], 2.5),
        ([0, None], 0.0),
    ),
)
def test_compute_average(ratings: list[float | None], expected: float) -> None:
    assert ledger.compute_average(ratings) == expected


def test_compute_average_is_zero_not_nan_without_ratings() -> None:
    got = ledger.compute_average(iter([None]))
    assert got == 0 and got == got


@pytest.mark.parametrize("rating", (0, 0.5, 3, 5, 4.5))
def test_validate_rating_accepts(rating: float) -> None:
    assert ledger.validate_rating(rating) == float(rating)


@pytest.mark.parametrize("rating", (-1, 5.01, True, None, "4", [4]))
def test_validate_rating_rejects(rating: object) -> None:
    with pytest.raises(ValidationError):
        ledger.validate_rating(rating)


def test_first_visit_has_no_ratings() -> None:
    restaurant = ichiran()
    assert [v.number for v in restaurant.visits] == [1]
    assert restaurant.rating_average == 0
    assert restaurant.visits[0].rating_average == 0
    assert restaurant.visits[0].ratings() == [None, None]
    assert restaurant.last_visited == date(2024, 5, 1)


def test_visit_numbers_are_sequential() -> None:
    restaurant = ichiran()
    for day in (3, 2, 10):
        ledger.append_visit(restaurant, visit_date=date(2024, 6, day), members=[C])
    assert [v.number for v in restaurant.visits] == [1, 2, 3, 4]
    assert restaurant.last_visited == date(2024, 6, 10)


def test_older_visit_does_not_move_last_visited_back() -> None:
    restaurant = ichiran()
    ledger.append_visit(restaurant, visit_date=date(2023, 1, 1), members=[A])
    assert restaurant.last_visited == date(2024, 5, 1)


def test_scenario_rating_updates_both_averages() -> None:
    restaurant = ichiran()

    ledger.set_rating(restaurant, visit_number=1, participant=A, acting=A, rating=4)
    assert restaurant.visits[0].rating_average == 4
    assert restaurant.rating_average == 4

    ledger.set_rating(restaurant, visit_number=1, participant=B, acting=B, rating=2)
    assert restaurant.visits[0].rating_average == 3
    assert restaurant.rating_average == 3


def test_overall_average_spans_visits() -> None:
    restaurant = ichiran()
    ledger.set_rating(restaurant, visit_number=1, participant=A, acting=A, rating=4)
    ledger.set_rating(restaurant, visit_number=1, participant=B, acting=B, rating=2)
    ledger.append_visit(restaurant, visit_date=date(2024, 7, 1), members=[A, C])

    assert restaurant.rating_average == 3
    assert restaurant.visits[1].rating_average == 0

    ledger.set_rating(restaurant, visit_number=2, participant=C, acting=C, rating=5)
    assert restaurant.visits[1].rating_average == 5
    assert restaurant.visits[0].rating_average == 3
    assert restaurant.rating_average == pytest.approx(11 / 3)


def test_amending_a_rating_recomputes() -> None:
    restaurant = ichiran()
    ledger.set_rating(restaurant, visit_number=1, participant=A, acting=A, rating=1)
    ledger.set_rating(
        restaurant, visit_number=1, participant=A, acting=A, rating=5, review_text="Rich"
    )
    assert restaurant.rating_average == 5
    assert restaurant.visits[0].participants[0].review_text == "Rich"


def test_rating_someone_else_is_forbidden_and_changes_nothing() -> None:
    restaurant = ichiran()
    ledger.set_rating(restaurant, visit_number=1, participant=A, acting=A, rating=4)

    with pytest.raises(ForbiddenError):
        ledger.set_rating(restaurant, visit_number=1, participant=B, acting=A, rating=1)

    assert restaurant.visits[0].ratings() == [4, None]
    assert restaurant.rating_average == 4


def test_admin_cannot_rate_for_others() -> None:
    restaurant = ichiran()
    admin = member("boss", Role.admin)
    with pytest.raises(ForbiddenError):
        ledger.set_rating(restaurant, visit_number=1, participant=A, acting=admin, rating=3)


def test_unknown_visit_or_participant() -> None:
    restaurant = ichiran()
    with pytest.raises(NotFoundError):
        ledger.set_rating(restaurant, visit_number=2, participant=A, acting=A, rating=3)
    with pytest.raises(NotFoundError):
        ledger.set_rating(restaurant, visit_number=1, participant=C, acting=C, rating=3)


def test_anonymised_participant_still_counts() -> None:
    restaurant = ichiran()
    ledger.set_rating(restaurant, visit_number=1, participant=A, acting=A, rating=4)
    ledger.set_rating(restaurant, visit_number=1, participant=B, acting=B, rating=2)
    restaurant.visits[0].participants[0].member_id = None

    ledger.recompute(restaurant, restaurant.visits[0])

    assert restaurant.rating_average == 3
    assert restaurant.visits[0].participant(A.id) is None
