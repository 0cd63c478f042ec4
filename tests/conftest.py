from datetime import date
from decimal import Decimal

import pytest

from fleet_ledger.db import INITIAL_MIGRATION, apply_sqlite_migration, connect_sqlite
from fleet_ledger.models import Vehicle
from fleet_ledger.repositories import VehicleRepository
from fleet_ledger.services import LedgerService

WEEK_START = date(2024, 1, 1)
WEEK_END = date(2024, 1, 7)


def amounts(cash="0", online="0", diesel="0", tolls="0", maintenance="0", other="0"):
    return {
        "cash_collected": Decimal(cash),
        "online_earnings": Decimal(online),
        "diesel_expense": Decimal(diesel),
        "tolls_parking": Decimal(tolls),
        "maintenance_repairs": Decimal(maintenance),
        "other_expenses": Decimal(other),
    }


@pytest.fixture
def conn():
    connection = connect_sqlite(check_same_thread=False)
    apply_sqlite_migration(connection, INITIAL_MIGRATION)
    yield connection
    connection.close()


@pytest.fixture
def add_vehicle(conn):
    repo = VehicleRepository(conn)

    def _add(registration, driver="John Doe", phone="1234567890", status="active"):
        with conn:
            return repo.create(
                Vehicle(registration_number=registration, driver_name=driver, driver_phone=phone, status=status)
            )

    return _add


@pytest.fixture
def ledger(conn):
    return LedgerService(conn)
