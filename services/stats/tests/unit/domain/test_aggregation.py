import pytest
from src.domain.aggregation import (
    apply_view,
    compute_snapshot,
    render_payload,
    to_percent,
)
from src.domain.models import SourceRow, StatsQuery
from stats_fakes import NOW, make_rows


def test_ranks_are_contiguous_and_ordered_by_win_rate():
    rows = make_rows(
        {
            "Franks": (100, 60),
            "Britons": (50, 20),
            "Mongols": (80, 44),
            "Huns": (40, 30),
        }
    )
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    assert [r.rank for r in snap.records] == [1, 2, 3, 4]
    assert [r.dimension for r in snap.records] == [
        "Huns",  # 0.75
        "Franks",  # 0.60
        "Mongols",  # 0.55
        "Britons",  # 0.40
    ]


def test_equal_win_rates_tie_break_by_name():
    rows = make_rows({"Vikings": (20, 10), "Aztecs": (40, 20), "Celts": (10, 5)})
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    assert [r.dimension for r in snap.records] == ["Aztecs", "Celts", "Vikings"]
    assert [r.rank for r in snap.records] == [1, 2, 3]


def test_min_games_excluded_from_records_and_pick_rate_denominator():
    rows = make_rows({"Franks": (30, 15), "Goths": (10, 6), "Malay": (9, 9)})
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    by_dim = snap.by_dimension()
    assert "Malay" not in by_dim
    assert snap.total_games == 40
    assert by_dim["Franks"].metrics.pick_rate == pytest.approx(0.75)
    assert by_dim["Goths"].metrics.pick_rate == pytest.approx(0.25)
    assert sum(r.metrics.pick_rate for r in snap.records) == pytest.approx(1.0)


def test_rates_are_unrounded_fractions():
    rows = make_rows({"Franks": (3 * 7, 7)})
    snap = compute_snapshot("42", rows, min_games=1, now=NOW)
    m = snap.records[0].metrics
    assert m.win_rate == 7 / 21
    assert m.losses == 14
    assert m.avg_rating == pytest.approx(1000.0)


def test_duplicate_dimension_rows_are_merged():
    rows = [
        SourceRow(dimension="Franks", games=6, wins=3, rating_sum=600, rating_count=6),
        SourceRow(dimension="Franks", games=6, wins=5, rating_sum=1800, rating_count=6),
        SourceRow(dimension="", games=50, wins=50),
    ]
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    assert len(snap.records) == 1
    rec = snap.records[0]
    assert (rec.metrics.games, rec.metrics.wins) == (12, 8)
    assert rec.metrics.avg_rating == pytest.approx(200.0)


def test_empty_result_is_a_valid_snapshot():
    snap = compute_snapshot("42", make_rows({"Goths": (3, 1)}), min_games=10, now=NOW)
    assert snap.records == []
    assert snap.total_games == 0
    assert snap.built_at == NOW


def test_missing_ratings_leave_avg_rating_empty():
    rows = [SourceRow(dimension="Goths", games=10, wins=4)]
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    assert snap.records[0].metrics.avg_rating is None


def test_apply_view_filters_sorts_and_pages():
    rows = make_rows(
        {
            "Franks": (100, 60),
            "Britons": (50, 20),
            "Mongols": (80, 44),
            "Huns": (40, 30),
        }
    )
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)

    by_games = apply_view(snap, StatsQuery(sort="games", limit=2))
    assert [r.dimension for r in by_games] == ["Franks", "Mongols"]

    filtered = apply_view(snap, StatsQuery(min_games=60, sort="name"))
    assert [r.dimension for r in filtered] == ["Franks", "Mongols"]

    page = apply_view(snap, StatsQuery(offset=1, limit=2))
    assert [r.rank for r in page] == [2, 3]


def test_percentages_rounded_only_in_payload():
    rows = make_rows({"Franks": (30, 10), "Goths": (60, 40)})
    snap = compute_snapshot("42", rows, min_games=10, now=NOW)
    body = render_payload(snap, StatsQuery(partition="42"), "materialized")
    franks = next(c for c in body["civilizations"] if c["name"] == "Franks")
    assert franks["win_rate_pct"] == 33.33
    assert franks["win_rate"] == 1 / 3
    assert franks["pick_rate_pct"] == 33.33
    assert body["source"] == "materialized"
    assert body["degraded"] is False and body["stale"] is False
    assert body["meta"]["total_civilizations"] == 2
    assert body["meta"]["built_at"] == NOW.isoformat()


def test_payload_splits_leaderboard_partition():
    snap = compute_snapshot("42:rm_1v1", make_rows({"Franks": (30, 10)}), 10, NOW)
    body = render_payload(snap, StatsQuery(partition="42"), "live")
    assert (body["partition"], body["leaderboard"]) == ("42", "rm_1v1")
    assert body["civilizations"][0]["name"] == "Franks"


def test_to_percent():
    assert to_percent(0.123456) == 12.35
    assert to_percent(1.0) == 100.0


def test_sparse_dimension_below_floor_is_excluded():
    rows = make_rows({"Franks": (120, 60), "Sicilians": (3, 3), "Goths": (80, 40)})
    snap = compute_snapshot("42", rows, min_games=50, now=NOW)
    assert [r.dimension for r in snap.records] == ["Franks", "Goths"]
    assert snap.total_games == 200
    assert snap.by_dimension()["Franks"].metrics.pick_rate == pytest.approx(0.6)
