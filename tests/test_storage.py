"""
Tests for the store boundary: document codec and the in-memory store.

Async store calls run inside asyncio.run so no async test plugin is needed.
"""

import asyncio

import pytest
from datetime import date
from uuid import uuid4

from ledgersync.models import Budget, EntityKind, Expense, Income
from ledgersync.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    SubscriptionError,
    collection_path,
    decode_document,
    decode_documents,
    encode_entity,
    owner_path,
)
from ledgersync.models import AuditEventBuilder
from ledgersync.validation import ValidationError


OWNER = "user-1"


def make_expense(account_id, amount=10.0, category="food"):
    return Expense(
        owner_id=OWNER,
        bank_account_id=account_id,
        amount=amount,
        date=date(2024, 3, 1),
        category=category,
    )


class TestPaths:
    def test_collection_paths(self):
        account_id = uuid4()
        assert owner_path(OWNER) == "users/user-1"
        assert collection_path(OWNER, EntityKind.BUDGETS) == "users/user-1/budgets"
        assert (
            collection_path(OWNER, EntityKind.INCOMES, account_id)
            == f"users/user-1/bankAccounts/{account_id}/incomes"
        )

    def test_account_scoped_path_needs_account(self):
        with pytest.raises(ValueError):
            collection_path(OWNER, EntityKind.EXPENSES)


class TestCodec:
    """Typed decode at the store boundary."""

    def test_decode_encoded_entity(self):
        expense = make_expense(uuid4(), amount=250.56)
        decoded = decode_document(EntityKind.EXPENSES, encode_entity(expense), OWNER)
        assert decoded == expense

    def test_malformed_document_rejected(self):
        with pytest.raises(ValidationError):
            decode_document(EntityKind.INCOMES, {"id": str(uuid4()), "ownerId": OWNER, "amount": "lots"})

    @pytest.mark.parametrize("amount", [1e30, "1e400", 10**40])
    def test_oversized_amount_rejected(self, amount):
        document = dict(encode_entity(make_expense(uuid4())), amount=amount)
        with pytest.raises(ValidationError):
            decode_document(EntityKind.EXPENSES, document, OWNER)

    def test_owner_mismatch_rejected(self):
        document = encode_entity(make_expense(uuid4()))
        with pytest.raises(ValidationError) as exc_info:
            decode_document(EntityKind.EXPENSES, document, "someone-else")
        assert exc_info.value.issues[0].issue_type == "owner_mismatch"

    def test_decode_documents_is_all_or_nothing(self):
        account_id = uuid4()
        good = encode_entity(make_expense(account_id))
        bad = dict(good, id=str(uuid4()), amount=-5)
        with pytest.raises(ValidationError) as exc_info:
            decode_documents(EntityKind.EXPENSES, [good, bad], OWNER)
        assert all(i.field.startswith("[1].") for i in exc_info.value.issues)

    def test_decode_documents(self):
        account_id = uuid4()
        expenses = [make_expense(account_id), make_expense(account_id, 20)]
        decoded = decode_documents(
            EntityKind.EXPENSES, [encode_entity(e) for e in expenses], OWNER
        )
        assert [e.amount for e in decoded] == [10.0, 20.0]


class TestInMemoryLedgerStore:
    """Reads, writes and live snapshots of the in-memory store."""

    def test_write_and_list_scoped(self):
        async def scenario():
            store = InMemoryLedgerStore()
            first, second = uuid4(), uuid4()
            await store.create_or_replace(EntityKind.EXPENSES, make_expense(first))
            await store.create_or_replace(EntityKind.EXPENSES, make_expense(second))

            only_first = await store.list_for_owner(EntityKind.EXPENSES, OWNER, first)
            everything = await store.list_for_owner(EntityKind.EXPENSES, OWNER)
            nobody = await store.list_for_owner(EntityKind.EXPENSES, "user-2")
            return only_first, everything, nobody

        only_first, everything, nobody = asyncio.run(scenario())
        assert len(only_first) == 1
        assert len(everything) == 2
        assert nobody == []

    def test_replace_and_delete(self):
        async def scenario():
            store = InMemoryLedgerStore()
            account_id = uuid4()
            expense = make_expense(account_id)
            await store.create_or_replace(EntityKind.EXPENSES, expense)
            await store.create_or_replace(
                EntityKind.EXPENSES, expense.model_copy(update={"amount": 99.0})
            )
            after_replace = await store.list_for_owner(EntityKind.EXPENSES, OWNER, account_id)
            await store.delete(EntityKind.EXPENSES, expense.id, OWNER)
            await store.delete(EntityKind.EXPENSES, uuid4(), OWNER)  # Missing is fine
            after_delete = await store.list_for_owner(EntityKind.EXPENSES, OWNER, account_id)
            return after_replace, after_delete

        after_replace, after_delete = asyncio.run(scenario())
        assert [d["amount"] for d in after_replace] == [99.0]
        assert after_delete == []

    def test_owner_level_list_filters_by_account_scope(self):
        async def scenario():
            store = InMemoryLedgerStore()
            mine, other = uuid4(), uuid4()
            for scope in (None, mine, other):
                await store.create_or_replace(
                    EntityKind.BUDGETS,
                    Budget(owner_id=OWNER, category="food", budget_amount=100,
                           bank_account_id=scope),
                )
            return await store.list_for_owner(EntityKind.BUDGETS, OWNER, mine), mine

        documents, mine = asyncio.run(scenario())
        assert sorted(str(d["bankAccountId"]) for d in documents) == sorted(["None", str(mine)])

    def test_snapshots_delivered_in_order(self):
        async def scenario():
            store = InMemoryLedgerStore()
            account_id = uuid4()
            received = []

            async def on_snapshot(documents):
                received.append(sorted(d["amount"] for d in documents))

            store.subscribe_collection(
                owner_path(OWNER), account_id, EntityKind.EXPENSES, on_snapshot
            )
            await store.create_or_replace(EntityKind.EXPENSES, make_expense(account_id, 1))
            await store.create_or_replace(EntityKind.EXPENSES, make_expense(account_id, 2))
            await store.flush()
            return received

        assert asyncio.run(scenario()) == [[], [1.0], [1.0, 2.0]]

    def test_snapshots_are_copies(self):
        async def scenario():
            store = InMemoryLedgerStore()
            account_id = uuid4()
            await store.create_or_replace(EntityKind.EXPENSES, make_expense(account_id, 5))

            async def on_snapshot(documents):
                for document in documents:
                    document["amount"] = 0

            store.subscribe_collection(
                owner_path(OWNER), account_id, EntityKind.EXPENSES, on_snapshot
            )
            await store.flush()
            return await store.list_for_owner(EntityKind.EXPENSES, OWNER, account_id)

        assert asyncio.run(scenario())[0]["amount"] == 5.0

    def test_unsubscribe_drops_queued_snapshots(self):
        async def scenario():
            store = InMemoryLedgerStore()
            account_id = uuid4()
            received = []

            async def on_snapshot(documents):
                received.append(len(documents))

            unsubscribe = store.subscribe_collection(
                owner_path(OWNER), account_id, EntityKind.INCOMES, on_snapshot
            )
            unsubscribe()
            unsubscribe()  # Second call is a no-op
            await store.create_or_replace(
                EntityKind.INCOMES,
                Income(owner_id=OWNER, bank_account_id=account_id, amount=1,
                       date=date(2024, 3, 1), source="Gift"),
            )
            await store.flush()
            await asyncio.sleep(0)
            return received, store.subscription_count

        received, count = asyncio.run(scenario())
        assert received == []
        assert count == 0

    def test_only_transactions_can_be_watched(self):
        async def scenario():
            store = InMemoryLedgerStore()

            async def on_snapshot(documents):
                pass

            store.subscribe_collection(
                owner_path(OWNER), uuid4(), EntityKind.BUDGETS, on_snapshot
            )

        with pytest.raises(SubscriptionError):
            asyncio.run(scenario())

    def test_subscribe_needs_running_loop(self):
        async def on_snapshot(documents):
            pass

        store = InMemoryLedgerStore()
        with pytest.raises(SubscriptionError):
            store.subscribe_collection(owner_path(OWNER), uuid4(), EntityKind.EXPENSES, on_snapshot)

    def test_emit_subscription_error(self):
        async def scenario():
            store = InMemoryLedgerStore()
            errors = []

            async def on_snapshot(documents):
                pass

            store.subscribe_collection(
                owner_path(OWNER), uuid4(), EntityKind.EXPENSES, on_snapshot, errors.append
            )
            notified = store.emit_subscription_error(EntityKind.EXPENSES, "channel lost")
            store.close()
            return notified, errors

        notified, errors = asyncio.run(scenario())
        assert notified == 1
        assert isinstance(errors[0], SubscriptionError)
        assert errors[0].kind == EntityKind.EXPENSES


class TestInMemoryAuditStorage:
    def test_queries(self):
        async def scenario():
            storage = InMemoryAuditStorage()
            correlation_id = uuid4()
            account_id = uuid4()
            await storage.append_event(
                AuditEventBuilder.account_created(OWNER, account_id, "Main", 0, correlation_id)
            )
            await storage.append_event(AuditEventBuilder.account_selected(OWNER, account_id))
            return (
                await storage.get_events_by_correlation_id(correlation_id),
                await storage.get_events_by_entity("bankAccounts", account_id),
                await storage.get_recent_events(limit=1),
            )

        by_correlation, by_entity, recent = asyncio.run(scenario())
        assert len(by_correlation) == 1
        assert len(by_entity) == 2
        assert recent[0].event_type.value == "account_selected"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
