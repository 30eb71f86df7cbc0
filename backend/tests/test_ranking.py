import pytest

from impactey.models.records import InstrumentKind
from impactey.services import ranking
from impactey.services.ranking import MainstreamPolicy

from mocks import record

UNIVERSE = [
    record("AAPL", "Apple Inc.", 190.0, "NASDAQ"),
    record("APLE", "Apple Hospitality REIT Inc.", 15.0, "NYSE"),
    record("APPLX", "Apple Penny Co", 0.5, "NASDAQ"),
    record("APLOTC", "Apple Rural Holdings", 5.0, "OTC"),
    record("MSFT", "Microsoft Corporation", 410.0, "NASDAQ"),
    record("SPY", "SPDR S&P 500 ETF Trust", 520.0, "NYSEARCA", InstrumentKind.fund),
    record("TQQQ", "ProShares UltraPro QQQ", 60.0, "NASDAQ", InstrumentKind.fund),
    record("SH", "ProShares Short S&P500", 40.0, "NYSEARCA", InstrumentKind.fund),
    record("VCSH", "Vanguard Short-Term Corporate Bond ETF", 78.0, "NASDAQ", InstrumentKind.fund),
    record("GBTC", "Grayscale Bitcoin Trust", 55.0, "NYSEARCA", InstrumentKind.fund),
]


def symbols(results):
    return [r.symbol for r in results]


def test_name_query_ranks_well_known_first():
    assert symbols(ranking.search(UNIVERSE, "apple")) == ["AAPL", "APLE"]


def test_exact_symbol_beats_everything():
    out = ranking.search(UNIVERSE, "aapl")
    assert symbols(out)[0] == "AAPL"
    assert ranking.relevance(out[0], "aapl") >= ranking.SCORE_EXACT


def test_case_and_whitespace_insensitive():
    assert symbols(ranking.search(UNIVERSE, "  MicroSoft ")) == ["MSFT"]


@pytest.mark.parametrize("query", ["", "   "])
def test_blank_query_returns_nothing(query):
    assert ranking.search(UNIVERSE, query) == []


def test_limit_zero_returns_nothing():
    assert ranking.search(UNIVERSE, "apple", limit=0) == []


def test_limit_truncates():
    assert len(ranking.search(UNIVERSE, "a", limit=2)) == 2


def test_otc_and_penny_stocks_are_filtered():
    out = symbols(ranking.search(UNIVERSE, "apple"))
    assert "APPLX" not in out
    assert "APLOTC" not in out


def test_leveraged_inverse_and_crypto_products_excluded():
    assert ranking.search(UNIVERSE, "proshares") == []
    assert ranking.search(UNIVERSE, "bitcoin") == []


def test_short_term_bond_fund_is_not_treated_as_short_product():
    assert symbols(ranking.search(UNIVERSE, "short-term")) == ["VCSH"]


def test_results_are_mainstream_and_match_query():
    for r in ranking.search(UNIVERSE, "s"):
        assert ranking.is_mainstream(r)
        assert "s" in r.symbol.lower() or "s" in r.name.lower()


def test_ties_break_on_symbol():
    recs = [record("BBB", "Widget Two", 20.0, "AMEX"), record("AAA", "Widget One", 20.0, "AMEX")]
    assert symbols(ranking.search(recs, "widget")) == ["AAA", "BBB"]


def test_price_band_takes_single_highest():
    assert ranking._price_bonus(150.0) == 30
    assert ranking._price_bonus(60.0) == 20
    assert ranking._price_bonus(11.0) == 10
    assert ranking._price_bonus(10.0) == 0


def test_policy_min_price_is_configurable():
    strict = MainstreamPolicy(min_price=20.0)
    assert symbols(ranking.search(UNIVERSE, "apple", policy=strict)) == ["AAPL"]


@pytest.mark.parametrize("symbol,name", [
    ("OPCH", "Option Care Health Inc."),
    ("BULL", "Webull Corporation"),
    ("BEAR", "Bear Creek Mining Corp"),
    ("ETHR", "Ether Industries Inc."),
])
def test_ordinary_equities_are_not_taken_for_products(symbol, name):
    assert not ranking.is_excluded_product(symbol, name)


@pytest.mark.parametrize("symbol,name", [
    ("SOXL", "Direxion Daily Semiconductor Bull 3X Shares"),
    ("QYLD", "Global X Nasdaq 100 Covered Call Options Income ETF"),
    ("ETHE", "Grayscale Ether Trust"),
])
def test_fund_phrasing_is_still_excluded(symbol, name):
    assert ranking.is_excluded_product(symbol, name)
