import asyncio
import inspect
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_analytics.config import AppSettings  # noqa: E402
from portfolio_analytics.core.logging import RecordingErrorSink  # noqa: E402
from portfolio_analytics.schemas import Formula, Record  # noqa: E402
from portfolio_analytics.services import (  # noqa: E402
    DashboardEngine,
    InMemoryCustomerDirectory,
    InMemoryFormulaRepository,
    InMemoryProductCatalog,
    InMemoryRecordStore,
)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            arguments = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**arguments))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None)


@pytest.fixture
def error_sink() -> RecordingErrorSink:
    return RecordingErrorSink()


@pytest.fixture
def loan_records() -> list[Record]:
    rows = [
        {
            "loan_id": "L-1",
            "customer_id": "C-1",
            "sector": "Agriculture",
            "branch_code": "lsk01",
            "credit_rating": "a",
            "outstanding_balance": 100,
            "principal_amount": 120,
            "days_past_due": 0,
            "pd": 0.005,
            "disbursement_date": "2024-01-15",
            "status": "Performing",
        },
        {
            "loan_id": "L-2",
            "customer_id": "C-2",
            "sector": "agriculture",
            "branch_code": "lsk01",
            "credit_rating": "b",
            "outstanding_balance": 50,
            "principal_amount": 60,
            "days_past_due": 95,
            "pd": 0.03,
            "disbursement_date": "2024-01-20",
            "status": "NPL",
        },
        {
            "loan_id": "L-3",
            "customer_id": "C-9",
            "sector": "Trade",
            "branch_code": "ndl02",
            "credit_rating": "a",
            "outstanding_balance": 200,
            "principal_amount": 250,
            "days_past_due": 35,
            "pd": 0.2,
            "disbursement_date": "2024-02-03",
            "status": "Performing",
        },
    ]
    amounts = [100.0, 50.0, 200.0]
    return [
        Record(id=index + 1, product_id=1, amount=amounts[index], data=row)
        for index, row in enumerate(rows)
    ]


@pytest.fixture
def engine(settings: AppSettings, error_sink: RecordingErrorSink, loan_records: list[Record]) -> DashboardEngine:
    store = InMemoryRecordStore(loan_records)
    store.add(Record(id=10, product_id=2, amount=500, data={"sector": "Trade", "principal_amount": 500, "status": "NPL"}))
    formulas = InMemoryFormulaRepository(
        [
            Formula(id=1, name="Total Balance", expression="SUM(outstanding_balance)", product_id=1),
            Formula(id=2, name="NPL Ratio", expression="ignored", product_id=1),
            Formula(id=3, name="Retired", expression="SUM(principal_amount)", product_id=1, is_active=False),
        ]
    )
    return DashboardEngine(
        store,
        formulas,
        catalog=InMemoryProductCatalog({1: "SME Loans", 2: "Microfinance"}),
        customers=InMemoryCustomerDirectory({"C-1": "Mwila Banda", "C-2": "Chanda Phiri"}),
        settings=settings,
        error_sink=error_sink,
    )
