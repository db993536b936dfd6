from portfolio_analytics.services.cross_product import DEFAULT_TABLE_COLUMNS


def test_pie_chart_by_product(engine):
    result = engine.compute_cross_product_chart("PieChart", {}, [1, 2, 3])

    assert result["data"] == [
        {"label": "SME Loans", "value": 430.0},
        {"label": "Microfinance", "value": 500.0},
        {"label": "Product 3", "value": 0.0},
    ]


def test_pie_chart_by_field_uses_union(engine):
    result = engine.compute_cross_product_chart("PieChart", {"group_by": "sector"}, [1, 2])

    assert result["data"][0] == {"label": "Trade", "value": 750.0}


def test_bar_chart_labels_missing_keys_unknown(engine):
    result = engine.compute_cross_product_chart("BarChart", {}, [1, 2])

    assert result["data"] == [
        {"x": "a", "y": 2.0},
        {"x": "b", "y": 1.0},
        {"x": "Unknown", "y": 1.0},
    ]


def test_table_groups_by_sector(engine):
    result = engine.compute_cross_product_chart("Table", {}, [1, 2])

    assert result["columns"] == DEFAULT_TABLE_COLUMNS
    assert result["data"][-1] == {
        "sector": "Trade",
        "loan_count": 2,
        "total_value": 750.0,
        "average_size": 375.0,
        "npl_count": 1,
        "npl_ratio": 50.0,
    }


def test_table_unknown_columns_render_zero(engine):
    result = engine.compute_cross_product_chart("Table", {"columns": ["sector", "yield"]}, [2])

    assert result["data"] == [{"sector": "Trade", "yield": 0}]


def test_line_chart_by_month(engine):
    result = engine.compute_cross_product_chart("LineChart", {}, [1, 2])

    assert result["data"] == [{"x": "2024-01", "y": 180.0}, {"x": "2024-02", "y": 250.0}]


def test_heatmap_is_not_supported(engine):
    assert engine.compute_cross_product_chart("Heatmap", {}, [1, 2]) == {
        "error": "Cross-product data not supported for widget type: Heatmap"
    }


def test_kpi_formats_currency(engine):
    result = engine.compute_cross_product_chart(
        "KPI", {"metric": "SUM(principal_amount)", "format": "currency"}, [1, 2]
    )

    assert result == {
        "value": 930.0,
        "formatted_value": "ZMW930.00",
        "format": "currency",
        "precision": 2,
        "color": "primary",
    }


def test_kpi_percentage_and_default_count(engine):
    ratio = engine.compute_cross_product_chart(
        "KPI",
        {"metric": 'COUNT(CASE WHEN status = "NPL" THEN 1 END) / COUNT(*)', "format": "percentage"},
        [1, 2],
    )

    assert ratio["value"] == 0.5
    assert ratio["formatted_value"] == "50.00%"
    assert engine.compute_cross_product_chart("KPI", {}, [1, 2])["formatted_value"] == "4.00"
