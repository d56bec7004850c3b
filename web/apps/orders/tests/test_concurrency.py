"""Checkout completions racing on real threads.

Each thread uses its own database connection. The sqlite test database is
file-backed and opens transactions with BEGIN IMMEDIATE, so concurrent
writers queue on the database lock; on PostgreSQL the conditional
updates and row locks do the same job.
"""

import threading

import pytest
from django.db import connection

from apps.orders.checkout import CheckoutSessionManager
from apps.orders.domain import CartItem
from apps.orders.errors import BadRequest, Conflict
from apps.orders.factory import OrderFactory
from apps.orders.models import OrderModel, ProductModel
from apps.orders.sessions import DjangoSessionStore


def run_concurrently(fn, calls):
    """Start one thread per argument tuple, release them together, collect results or exceptions."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, args):
        try:
            barrier.wait()
            results[index] = fn(*args)
        except Exception as exc:
            results[index] = exc
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, args)) for i, args in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


@pytest.fixture
def manager(clock):
    return CheckoutSessionManager(DjangoSessionStore(), clock=clock)


@pytest.fixture
def factory(clock, sink):
    return OrderFactory(DjangoSessionStore(), notifier=sink, clock=clock)


@pytest.mark.django_db(transaction=True)
def test_parallel_completions_never_oversell(manager, factory, sink, contact, merchant, make_product):
    scarce = make_product(merchant, name="Pineapple Tart", inventory=3)
    sessions = [manager.create(merchant.id, [CartItem(str(scarce.id), 1)]) for _ in range(8)]

    results = run_concurrently(factory.complete, [(s.session_id, contact) for s in sessions])

    receipts = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(receipts) == 3
    assert len(failures) == 5
    assert all(isinstance(e, BadRequest) and e.code == "INSUFFICIENT_STOCK" for e in failures)

    assert ProductModel.objects.get(pk=scarce.pk).inventory == 0
    assert OrderModel.objects.count() == 3
    assert len({r.order_number for r in receipts}) == 3
    assert sorted(sink.names()) == ["order.created"] * 3


@pytest.mark.django_db(transaction=True)
def test_parallel_completions_of_one_session(manager, factory, contact, merchant, product):
    session = manager.create(merchant.id, [CartItem(str(product.id), 2)])

    results = run_concurrently(factory.complete, [(session.session_id, contact)] * 2)

    receipts = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(receipts) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], Conflict)
    assert OrderModel.objects.count() == 1
    assert ProductModel.objects.get(pk=product.pk).inventory == 8


@pytest.mark.django_db(transaction=True)
def test_parallel_orders_for_different_products_get_distinct_numbers(manager, factory, contact, merchant, make_product):
    products = [make_product(merchant, name=f"Set Meal {i}") for i in range(6)]
    sessions = [manager.create(merchant.id, [CartItem(str(p.id), 1)]) for p in products]

    results = run_concurrently(factory.complete, [(s.session_id, contact) for s in sessions])

    assert not [r for r in results if isinstance(r, Exception)]
    numbers = sorted(OrderModel.objects.values_list("internal_id", flat=True))
    assert len(set(numbers)) == 6
    assert numbers == list(range(numbers[0], numbers[0] + 6))
