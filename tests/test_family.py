from app.stats.family import compute_family_metrics, events_by_month
from tests.conftest import utc

NOW = utc("2025-06-01T00:00:00")


def test_positions_map_to_mothers_fathers_family(make_ea):
    events = [
        make_ea("m", "2025-03-05T19:00:00", members=6, roster=10),
        make_ea("f", "2025-03-12T19:00:00", members=4, roster=10),
        make_ea("fam", "2025-03-19T19:00:00", members=7, roster=10),
    ]
    out = compute_family_metrics(events, NOW)

    assert out["parents_nights_rate"] == 100  # (120 + 80) / 2
    assert out["family_nights_rate"] == 70
    assert out["parents_nights_attendance"] == 5
    assert out["family_nights_attendance"] == 7
    assert out["events_breakdown"] == {
        "total_months": 1,
        "months_with_parents_data": 1,
        "months_with_family_data": 1,
        "mothers_nights_count": 1,
        "fathers_nights_count": 1,
        "family_nights_count": 1,
    }


def test_order_within_month_comes_from_dates_not_input_order(make_ea):
    events = [
        make_ea("fam", "2025-03-19T19:00:00", members=7, roster=10),
        make_ea("m", "2025-03-05T19:00:00", members=6, roster=10),
        make_ea("f", "2025-03-12T19:00:00", members=4, roster=10),
    ]
    out = compute_family_metrics(events, NOW)
    assert out["family_nights_rate"] == 70


def test_canceled_event_still_holds_its_position(make_ea):
    events = [
        make_ea("m", "2025-03-05T19:00:00", canceled=True, roster=10),
        make_ea("f", "2025-03-12T19:00:00", members=4, roster=10),
        make_ea("fam", "2025-03-19T19:00:00", members=7, roster=10),
    ]
    out = compute_family_metrics(events, NOW)

    # the canceled 1st event keeps the 2nd as Fathers Night
    assert out["parents_nights_rate"] == 80
    assert out["family_nights_rate"] == 70
    assert out["events_breakdown"]["mothers_nights_count"] == 1


def test_events_beyond_third_are_ignored(make_ea):
    events = [
        make_ea("m", "2025-03-05T19:00:00", members=6, roster=10),
        make_ea("f", "2025-03-12T19:00:00", members=4, roster=10),
        make_ea("fam", "2025-03-19T19:00:00", members=7, roster=10),
        make_ea("extra", "2025-03-26T19:00:00", members=10, roster=10),
    ]
    out = compute_family_metrics(events, NOW)
    assert out["family_nights_rate"] == 70
    assert out["events_breakdown"]["family_nights_count"] == 1


def test_parents_night_expects_half_the_roster_rounded_up(make_ea):
    out = compute_family_metrics([make_ea("m", "2025-03-05T19:00:00", members=5, roster=9)], NOW)
    assert out["parents_nights_rate"] == 100  # 5 / ceil(4.5)


def test_future_events_are_left_out(make_ea):
    now = utc("2025-03-15T00:00:00")
    events = [
        make_ea("m", "2025-03-05T19:00:00", members=6, roster=10),
        make_ea("f", "2025-03-12T19:00:00", members=4, roster=10),
        make_ea("fam", "2025-03-19T19:00:00", members=7, roster=10),
    ]
    out = compute_family_metrics(events, now)
    assert out["family_nights_rate"] == 0
    assert out["events_breakdown"]["months_with_family_data"] == 0
    assert out["events_breakdown"]["family_nights_count"] == 0


def test_rates_are_averaged_across_months(make_ea):
    events = [
        make_ea("m1", "2025-03-05T19:00:00", members=6, roster=10),
        make_ea("f1", "2025-03-12T19:00:00", members=4, roster=10),
        make_ea("m2", "2025-04-02T19:00:00", members=3, roster=10),
        make_ea("f2", "2025-04-09T19:00:00", canceled=True, roster=10),
    ]
    out = compute_family_metrics(events, NOW)
    assert out["parents_nights_rate"] == 80  # (100 + 60) / 2
    assert out["events_breakdown"]["total_months"] == 2
    assert out["events_breakdown"]["months_with_family_data"] == 0


def test_no_events_gives_zeroes():
    out = compute_family_metrics([], NOW)
    assert out["parents_nights_rate"] == 0
    assert out["family_nights_rate"] == 0
    assert out["events_breakdown"]["total_months"] == 0


def test_events_by_month_groups_and_sorts(make_ea):
    months = events_by_month([
        make_ea("b", "2025-04-09T19:00:00"),
        make_ea("a", "2025-04-02T19:00:00"),
        make_ea("c", "2025-03-05T19:00:00"),
    ], NOW)
    assert sorted(months) == ["2025-03", "2025-04"]
    assert [ea.event.id for ea in months["2025-04"]] == ["a", "b"]
