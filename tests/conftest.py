import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models import Base, User, AffiliateProgram  # noqa: E402
from affiliate_system.utils.time_machine import timeMachine  # noqa: E402
from affiliate_system.events.event_bus import eventBus, AffiliateEvents  # noqa: E402

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'affiliate.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def frozen_time():
    timeMachine.setTime(NOW, actorId="tests")
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture(autouse=True)
def clean_event_bus():
    eventBus.clear()
    yield
    eventBus.clear()


@pytest.fixture
def emitted():
    """Every event emitted during the test, as (eventName, data)."""
    captured = []
    for attribute, eventName in vars(AffiliateEvents).items():
        if not attribute.isupper():
            continue

        def record(data, eventName=eventName):
            captured.append((eventName, data))

        eventBus.subscribe(eventName, record)
    return captured


@pytest.fixture
def make_user(session):
    def factory(ref=None, sponsor=None, joinedAt=None, status="active", isAmbassador=None, **fields):
        user = User(
            referralCode=ref,
            sponsorID=sponsor.userID if sponsor else None,
            joinedAt=joinedAt or NOW - timedelta(days=30),
            status=status,
            isAmbassador=bool(ref) if isAmbassador is None else isAmbassador,
            cashbackBalance=Decimal("0"),
            **fields
        )
        session.add(user)
        session.commit()
        return user

    return factory


@pytest.fixture
def make_program(session):
    def factory(name="amazon-fr", **fields):
        values = {
            "name": name,
            "network": "amazon",
            "redirectTemplate": "{BASE_URL}?tag={AFFILIATE_TAG}&subid={SUB_ID}",
            "baseUrl": "https://www.amazon.fr",
            "subIdParam": "subid",
            "subIdFormat": "buyla_{REF}",
            "publisherID": "buyla-tag-20",
            "networkCommissionRate": Decimal("10"),
            "buyerCashbackRate": Decimal("5"),
            "isActive": True,
        }
        values.update(fields)
        program = AffiliateProgram(**values)
        session.add(program)
        session.commit()
        return program

    return factory
