from decimal import Decimal

import pytest
from sqlmodel import select

from oneflow.core.errors import InternalError, NotFoundError
from oneflow.database import unit_of_work
from oneflow.models import Transaction, TransactionCategory, TransactionType, User
from oneflow.services import accounting, directory, ledger, payday
from oneflow.services.payday import Eligibility, compute_interest


def eligible(expenses="0", allowed="100") -> Eligibility:
    return Eligibility(
        expenses_last_week=Decimal(expenses),
        goals_total=Decimal("0"),
        approx_available=Decimal(allowed) * 5,
        allowed_spending=Decimal(allowed),
    )


def test_interest_rounds_to_cents() -> None:
    assert compute_interest(Decimal("33.33"), Decimal("5"), eligible()) == Decimal("1.67")


def test_no_interest_without_balance_or_rate() -> None:
    assert compute_interest(Decimal("0"), Decimal("5"), eligible()) == Decimal("0.00")
    assert compute_interest(Decimal("100"), Decimal("0"), eligible()) == Decimal("0.00")


def test_no_interest_after_overspending() -> None:
    assert compute_interest(Decimal("100"), Decimal("5"), eligible(expenses="31", allowed="30")) == Decimal("0.00")


async def _fund(session, user_id, income, spent=None):
    async with unit_of_work(session):
        await ledger.credit(session, user_id, income, description="Gift", category=TransactionCategory.BONUS)
        if spent:
            await ledger.record(session, user_id, spent, description="Toys",
                                category=TransactionCategory.FUN, type=TransactionType.EXPENSE)


def test_smiths_first_payday_pays_allowance_only(run, make_family) -> None:
    async def scenario(session):
        group, admin, (kid,) = await make_family(session)
        await directory.update_settings(session, admin, kid.id, allowance_amount=Decimal("10"),
                                        interest_rate=Decimal("5"))

        report = await payday.run_payday(session, group.id)
        return report, kid.balance, admin.balance, await ledger.ledger_balance(session, kid.id)

    report, kid_balance, admin_balance, from_ledger = run(scenario)

    assert len(report.lines) == 1
    line = report.lines[0]
    assert line.nickname == "Kid"
    assert line.allowance == Decimal("10.00")
    assert line.interest == Decimal("0.00")
    assert line.note is None
    assert report.total == Decimal("10.00")
    assert kid_balance == Decimal("10.00")
    assert from_ledger == kid_balance
    assert admin_balance == Decimal("0.00")


def test_overspending_member_gets_no_interest(run, make_family) -> None:
    async def scenario(session):
        group, admin, (kid,) = await make_family(session)
        await directory.update_settings(session, admin, kid.id, interest_rate=Decimal("5"))
        await _fund(session, kid.id, 150, spent=100)

        check = await payday.eligibility(session, kid)
        report = await payday.run_payday(session, group.id)
        return check, report, kid.balance

    check, report, balance = run(scenario)

    assert check.expenses_last_week == Decimal("100.00")
    assert check.approx_available == Decimal("150.00")
    assert check.allowed_spending == Decimal("30.00")
    assert report.lines[0].interest == Decimal("0.00")
    assert report.lines[0].note == payday.OVERSPENT_NOTE
    assert balance == Decimal("50.00")


def test_interest_is_paid_on_the_balance_before_allowance(run, make_family) -> None:
    async def scenario(session):
        group, admin, (kid, sis) = await make_family(session, kids=("Kid", "Sis"))
        for member in (kid, sis):
            await directory.update_settings(session, admin, member.id, allowance_amount=Decimal("10"),
                                            interest_rate=Decimal("5"))
        await _fund(session, kid.id, 100)
        await _fund(session, sis.id, 100, spent=80)

        report = await payday.run_payday(session, group.id)
        interest = (await session.exec(
            select(Transaction).where(Transaction.category == TransactionCategory.BONUS,
                                      Transaction.description == "Interest 5.00%")
        )).all()
        return report, kid.balance, sis.balance, len(interest)

    report, kid_balance, sis_balance, interest_entries = run(scenario)

    lines = {line.nickname: line for line in report.lines}
    assert lines["Kid"].interest == Decimal("5.00")
    assert lines["Sis"].interest == Decimal("0.00")
    assert lines["Sis"].note == payday.OVERSPENT_NOTE
    assert report.total == Decimal("25.00")
    assert kid_balance == Decimal("115.00")
    assert sis_balance == Decimal("30.00")
    assert interest_entries == 1


def test_goal_savings_count_as_available(run, make_family) -> None:
    async def scenario(session):
        _, _, (kid,) = await make_family(session)
        await _fund(session, kid.id, 100, spent=20)
        goal = await accounting.create_goal(session, kid, title="Bike", target_amount=Decimal("200"))
        await accounting.deposit_to_goal(session, goal.id, kid, Decimal("40"))
        return await payday.eligibility(session, kid)

    check = run(scenario)

    # balance 40 + goals 40 + spent 20
    assert check.goals_total == Decimal("40.00")
    assert check.approx_available == Decimal("100.00")
    assert check.interest_payable


def test_pending_members_and_admins_are_skipped(run, make_family) -> None:
    async def scenario(session):
        group, admin, _ = await make_family(session, kids=())
        pending = await directory.join_group(session, group_email="a@x.com", nickname="Newbie", password="pw")
        await directory.update_settings(session, admin, admin.id, allowance_amount=Decimal("10"))
        report = await payday.run_payday(session, group.id)
        return report, pending.id

    report, _ = run(scenario)
    assert report.lines == []
    assert report.total == Decimal("0.00")


def test_payday_for_unknown_group(run) -> None:
    async def scenario(session):
        with pytest.raises(NotFoundError):
            await payday.run_payday(session, 404)

    run(scenario)


def test_failed_credit_rolls_back_the_whole_run(run, make_family, monkeypatch) -> None:
    async def scenario(session):
        group, admin, (kid, sis) = await make_family(session, kids=("Kid", "Sis"))
        for member in (kid, sis):
            await directory.update_settings(session, admin, member.id, allowance_amount=Decimal("10"))
        kid_id, sis_id, group_id = kid.id, sis.id, group.id

        credited = []
        real_credit = ledger.credit

        async def flaky_credit(session, user_id, amount, **kwargs):
            if credited:
                raise InternalError("Ledger unavailable")
            credited.append(user_id)
            return await real_credit(session, user_id, amount, **kwargs)

        monkeypatch.setattr(ledger, "credit", flaky_credit)
        with pytest.raises(InternalError):
            await payday.run_payday(session, group_id)
        monkeypatch.undo()

        balances = [(await session.get(User, user_id, populate_existing=True)).balance
                    for user_id in (kid_id, sis_id)]
        allowances = (await session.exec(
            select(Transaction).where(Transaction.category == TransactionCategory.ALLOWANCE)
        )).all()
        return credited, balances, await ledger.ledger_balance(session, kid_id), allowances, kid_id

    credited, balances, kid_ledger, allowances, kid_id = run(scenario)

    assert credited == [kid_id]
    assert balances == [Decimal("0.00"), Decimal("0.00")]
    assert kid_ledger == Decimal("0.00")
    assert allowances == []
