import pytest

from market_dashboard.aggregation_engine import MarketDataProcessor


@pytest.fixture()
def flat_tree():
    return {
        "USA": {
            "By Type": {
                "Type A": {"2023": 100, "2024": 110},
                "Type B": {"2023": 50, "2024": 55},
            }
        }
    }


@pytest.fixture()
def all_tree():
    return {
        "USA": {
            "By Type": {
                "All": {
                    "Type A": {"2023": 100, "2024": 110},
                    "Type B": {"2023": 50, "2024": 55},
                }
            }
        }
    }


@pytest.fixture()
def business_tree():
    return {
        "USA": {
            "By Channel": {
                "B2B": {"Pharmacy": {"2023": 10, "2024": 12}},
                "B2C": {"Retail": {"2023": 20, "2024": 25}},
            }
        }
    }


@pytest.fixture()
def nested_tree():
    """Two geographies, three levels, a duplicate name under two parents."""
    return {
        "USA": {
            "By End User": {
                "Hospital": {
                    "Public": {
                        "ICU": {"2023": 40, "2024": 44, "2025": 50},
                        "Ward": {"2023": 20, "2024": 21, "2025": 23},
                    },
                    "Private": {"2023": 30, "2024": 33, "2025": 36},
                },
                "Clinic": {
                    "Public": {"2023": 5, "2024": 6, "2025": 7},
                },
            }
        },
        "UK": {
            "By End User": {
                "Hospital": {
                    "Public": {
                        "ICU": {"2023": 10, "2024": 11, "2025": 12},
                    },
                },
            }
        },
    }


@pytest.fixture()
def processor():
    return MarketDataProcessor(max_depth=20, cagr_decimals=2, debug_timing=False)


@pytest.fixture()
def make_deep_tree():
    def _make(levels: int) -> dict:
        node = {"2023": 1, "2024": 2}
        for i in range(levels):
            node = {f"L{i}": node}
        return node
    return _make
