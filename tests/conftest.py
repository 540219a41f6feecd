import asyncio
from dataclasses import dataclass
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from oneflow.core.limits import limiter
from oneflow.database import build_engine, build_session_factory, create_schema
from oneflow.main import create_app
from oneflow.models import QuizBundle, QuizType
from oneflow.services import directory


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'oneflow.db'}"


@pytest.fixture
def run(db_url):
    """Run ``scenario(session)`` to completion against a fresh schema."""

    def runner(scenario):
        async def main():
            engine = build_engine(db_url, echo=False)
            try:
                await create_schema(engine)
                factory = build_session_factory(engine)
                async with factory() as session:
                    return await scenario(session)
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return runner


@pytest.fixture
def make_family():
    async def factory(session, kids=("Kid",)):
        group, admin = await directory.create_group(
            session,
            group_name="Smiths",
            admin_email="a@x.com",
            admin_nickname="Dad",
            password="pw1",
        )
        members = []
        for index, nickname in enumerate(kids, start=2):
            user = await directory.join_group(
                session, group_email="a@x.com", nickname=nickname, password=f"pw{index}"
            )
            members.append(await directory.approve_user(session, admin, user.id))
        return group, admin, members

    return factory


@pytest.fixture
def add_bundle(run):
    def factory(reward="3.00", threshold=80, questions=None) -> int:
        questions = questions if questions is not None else [
            {"prompt": "2 + 2", "options": ["3", "4"], "correct": 1},
            {"prompt": "10 / 2", "options": ["5", "2"], "correct": 0},
        ]

        async def scenario(session):
            bundle = QuizBundle(
                title="Pocket money basics",
                type=QuizType.FINANCIAL,
                age_group="8-10",
                reward=Decimal(reward),
                threshold=threshold,
                questions=questions,
            )
            session.add(bundle)
            await session.commit()
            return bundle.id

        return run(scenario)

    return factory


@pytest.fixture
def client(db_url):
    limiter.reset()
    with TestClient(create_app(db_url, echo=False)) as test_client:
        yield test_client


@dataclass
class Household:
    group_id: int
    admin_id: int
    kid_id: int
    admin: dict
    kid: dict


@pytest.fixture
def household(client) -> Household:
    """The Smiths: admin "Dad" and an approved member "Kid", both logged in."""

    created = client.post("/api/groups", json={
        "groupName": "Smiths",
        "adminEmail": "a@x.com",
        "adminNickname": "Dad",
        "password": "pw1",
    })
    assert created.status_code == 200, created.text
    body = created.json()
    admin_headers = bearer(body["accessToken"])

    joined = client.post("/api/join", json={"groupEmail": "a@x.com", "nickname": "Kid", "password": "pw2"})
    assert joined.status_code == 200, joined.text
    kid_id = joined.json()["user"]["id"]

    approved = client.post(f"/api/users/{kid_id}/approve", headers=admin_headers)
    assert approved.status_code == 200, approved.text

    login = client.post("/api/login", json={"groupEmail": "a@x.com", "nickname": "Kid", "password": "pw2"})
    assert login.status_code == 200, login.text

    return Household(
        group_id=body["group"]["id"],
        admin_id=body["user"]["id"],
        kid_id=kid_id,
        admin=admin_headers,
        kid=bearer(login.json()["accessToken"]),
    )
