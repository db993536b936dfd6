from datetime import date

from portfolio_analytics.services.filters import apply_filters, date_window, summarize_filters


def _ids(records):
    return [record.data["loan_id"] for record in records]


def test_preset_window_is_relative_to_today(loan_records):
    filtered = apply_filters(loan_records, {"date_range": "last_30_days"}, today=date(2024, 2, 20))

    assert _ids(filtered) == ["L-3"]
    assert date_window("last_90_days", date(2024, 4, 1)) == (date(2024, 1, 2), date(2024, 4, 1))


def test_explicit_date_range_is_inclusive(loan_records):
    filtered = apply_filters(loan_records, {"date_range": {"start": "2024-01-01", "end": "2024-01-20"}})

    assert _ids(filtered) == ["L-1", "L-2"]


def test_select_filters_accept_lists(loan_records):
    assert _ids(apply_filters(loan_records, {"branch": ["lsk01"]})) == ["L-1", "L-2"]
    assert _ids(apply_filters(loan_records, {"sector": ["Trade", ""]})) == ["L-3"]
    assert _ids(apply_filters(loan_records, {"status": "NPL", "branch": "lsk01"})) == ["L-2"]


def test_empty_and_unknown_filters_are_ignored(loan_records):
    filters = {"sector": [], "status": "", "favourite_colour": "blue"}

    assert len(apply_filters(loan_records, filters)) == 3
    assert len(apply_filters(loan_records, None)) == 3


def test_range_filters_skip_empty_bounds(loan_records):
    assert _ids(apply_filters(loan_records, {"outstanding_balance_range": {"min": 60, "max": ""}})) == ["L-1", "L-3"]
    assert _ids(apply_filters(loan_records, {"days_past_due_range": {"min": 0, "max": 40}})) == ["L-1", "L-3"]


def test_summary_labels():
    filters = {
        "sector": ["Agriculture", "Trade"],
        "date_range": "last_30_days",
        "outstanding_balance_range": {"min": 1000, "max": 5000},
        "days_past_due_range": {"min": 1, "max": 30},
        "currency": "USD",
        "branch": [],
    }

    assert summarize_filters(filters) == [
        "Sector: Agriculture, Trade",
        "Date: Last 30 Days",
        "Balance: ZMW1,000 - ZMW5,000",
        "Days Past Due: 1 - 30 days",
        "Currency: USD",
    ]
    assert summarize_filters({"date_range": {"start": "2024-01-01", "end": "2024-03-31"}}) == [
        "Date: 2024-01-01 to 2024-03-31"
    ]
