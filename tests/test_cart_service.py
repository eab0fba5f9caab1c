import asyncio
from decimal import Decimal

import pytest

from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import PersistenceError
from storefront.repos.cart_repo import RemoteCartRepository
from storefront.repos.session_store import SessionStore
from storefront.domain.schemas import CartLine


class FailingSessionStore(SessionStore):
    fail = False

    def save(self, lines):
        if self.fail:
            raise PersistenceError("Failed to write session cart")
        return super().save(lines)


class FlakyRemoteRepository(RemoteCartRepository):
    fail = False

    async def upsert(self, line, increment=False):
        if self.fail:
            raise PersistenceError("Failed to save cart line")
        return await super().upsert(line, increment=increment)

    async def delete(self, line_id):
        if self.fail:
            raise PersistenceError("Failed to delete cart line")
        return await super().delete(line_id)


class UnreachableRemoteRepository(RemoteCartRepository):
    async def upsert(self, line, increment=False):
        raise ConnectionRefusedError("connection refused")


class BrokenSessionStore(SessionStore):
    fail = False

    def save(self, lines):
        if self.fail:
            raise RuntimeError("serializer bug")
        return super().save(lines)


def quantities(cart):
    return {line.product.name: line.quantity for line in cart.items}


# =====================================================
# ANONIMOWY KOSZYK
# =====================================================
@pytest.mark.asyncio
async def test_add_new_product_creates_session_line(make_cart, session_store, catalog):
    cart = make_cart()
    await cart.initialize()

    result = await cart.add_to_cart(catalog["keyboard"].id, 2)

    assert result.ok
    assert result.value.id.startswith("session-")
    assert quantities(cart) == {"Keyboard": 2}
    assert session_store.load() == cart.items


@pytest.mark.asyncio
async def test_repeated_add_clamps_to_stock_with_warning(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    notices = []
    cart.subscribe(lambda event: notices.append(event) if event.kind == "notice" else None)

    first = await cart.add_to_cart(catalog["keyboard"].id, 3)
    second = await cart.add_to_cart(catalog["keyboard"].id, 3)

    assert first.ok and first.warnings == ()
    assert second.ok
    assert second.warnings == ("Only 5 units available in stock.",)
    assert quantities(cart) == {"Keyboard": 5}
    assert [(n.level, n.message) for n in notices] == [("warning", "Only 5 units available in stock.")]


@pytest.mark.asyncio
async def test_add_when_line_already_at_stock_is_rejected(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["monitor"].id, 2)

    result = await cart.add_to_cart(catalog["monitor"].id, 1)

    assert not result.ok
    assert result.error.kind == "validation"
    assert result.error.message == "Only 2 units available in stock."
    assert cart.error == "Only 2 units available in stock."
    assert quantities(cart) == {"Monitor": 2}


@pytest.mark.asyncio
async def test_add_new_line_above_stock_is_rejected(make_cart, session_store, catalog):
    cart = make_cart()
    await cart.initialize()

    result = await cart.add_to_cart(catalog["monitor"].id, 3)

    assert result.error.kind == "validation"
    assert cart.items == []
    assert session_store.load() == []


@pytest.mark.asyncio
async def test_add_non_positive_quantity_is_rejected(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()

    result = await cart.add_to_cart(catalog["mouse"].id, 0)

    assert result.error.kind == "validation"
    assert cart.items == []


@pytest.mark.asyncio
async def test_add_unknown_product_is_not_found(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()

    result = await cart.add_to_cart("does-not-exist", 1)

    assert result.error.kind == "not_found"
    assert cart.items == []


@pytest.mark.asyncio
async def test_update_quantity_zero_removes_line(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    await cart.add_to_cart(catalog["mouse"].id, 1)
    line = cart.find_by_product(catalog["keyboard"].id)

    result = await cart.update_quantity(line.id, 0)

    assert result.ok
    assert len(cart.items) == 1
    assert cart.find_line(line.id) is None


@pytest.mark.asyncio
async def test_update_quantity_clamps_to_stock(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    line = cart.items[0]

    result = await cart.update_quantity(line.id, 9)

    assert result.ok
    assert result.warnings == ("Only 5 units available in stock.",)
    assert cart.find_line(line.id).quantity == 5


@pytest.mark.asyncio
async def test_update_to_same_quantity_changes_nothing(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 2)
    events = []
    cart.subscribe(events.append)

    result = await cart.update_quantity(cart.items[0].id, 2)

    assert result.ok
    assert events == []


@pytest.mark.asyncio
async def test_update_and_remove_unknown_line_are_not_found(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()

    assert (await cart.update_quantity("missing", 2)).error.kind == "not_found"
    assert (await cart.remove_from_cart("missing")).error.kind == "not_found"


@pytest.mark.asyncio
async def test_totals_follow_items(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 2)
    await cart.add_to_cart(catalog["mouse"].id, 3)

    assert cart.total_items == 5
    assert cart.total_price == Decimal("261.50")


@pytest.mark.asyncio
async def test_session_cart_survives_reload(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 2)
    await cart.add_to_cart(catalog["mouse"].id, 1)

    reloaded = make_cart()
    await reloaded.initialize()

    assert reloaded.items == cart.items


@pytest.mark.asyncio
async def test_clear_cart_empties_session(make_cart, session_store, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 2)

    result = await cart.clear_cart()

    assert result.ok
    assert cart.items == []
    assert session_store.load() == []


@pytest.mark.asyncio
async def test_failed_session_write_reverts_state(redis_client, make_cart, catalog):
    store = FailingSessionStore("tab-failing", client=redis_client)
    cart = make_cart(store=store)
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    before = cart.items

    store.fail = True
    result = await cart.add_to_cart(catalog["mouse"].id, 1)

    assert result.error.kind == "persistence"
    assert cart.items == before
    assert cart.error == "Failed to write session cart"
    assert not cart.is_loading


@pytest.mark.asyncio
async def test_concurrent_adds_are_serialized(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()

    results = await asyncio.gather(*(cart.add_to_cart(catalog["mouse"].id, 1) for _ in range(4)))

    assert all(result.ok for result in results)
    assert len(cart.items) == 1
    assert quantities(cart) == {"Mouse": 4}


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_mutation(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    cart.subscribe(broken)
    unsubscribe = cart.subscribe(received.append)

    assert (await cart.add_to_cart(catalog["mouse"].id, 1)).ok
    assert received[-1].kind == "items"

    unsubscribe()
    await cart.add_to_cart(catalog["mouse"].id, 1)
    assert len(received) == 1


# =====================================================
# ZALOGOWANY KOSZYK
# =====================================================
@pytest.mark.asyncio
async def test_authenticated_add_persists_remote_line(make_cart, session_factory, session_store, catalog):
    cart = make_cart()
    await cart.initialize("alice")

    result = await cart.add_to_cart(catalog["keyboard"].id, 2)

    assert result.ok
    assert not result.value.id.startswith("session-")
    remote = await RemoteCartRepository(session_factory, "alice").load()
    assert remote == cart.items
    assert session_store.load() == []


@pytest.mark.asyncio
async def test_authenticated_update_and_remove(make_cart, session_factory, catalog):
    cart = make_cart()
    await cart.initialize("alice")
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    await cart.add_to_cart(catalog["mouse"].id, 1)
    keyboard = cart.find_by_product(catalog["keyboard"].id)
    mouse = cart.find_by_product(catalog["mouse"].id)

    await cart.update_quantity(keyboard.id, 4)
    await cart.remove_from_cart(mouse.id)

    remote = await RemoteCartRepository(session_factory, "alice").load()
    assert [(line.id, line.quantity) for line in remote] == [(keyboard.id, 4)]


@pytest.mark.asyncio
async def test_login_replaces_anonymous_cart(make_cart, session_factory, session_store, catalog):
    await RemoteCartRepository(session_factory, "alice").upsert(
        CartLine(id="pending", product_id=catalog["monitor"].id, quantity=1, product=catalog["monitor"])
    )
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    await cart.add_to_cart(catalog["mouse"].id, 2)

    result = await cart.handle_login("alice")

    assert result.ok
    assert cart.user_id == "alice"
    assert quantities(cart) == {"Monitor": 1}
    assert session_store.load() == []


@pytest.mark.asyncio
async def test_logout_resets_cart_but_keeps_remote(make_cart, catalog):
    cart = make_cart()
    await cart.initialize("alice")
    await cart.add_to_cart(catalog["keyboard"].id, 2)

    await cart.handle_logout()

    assert cart.user_id is None
    assert cart.items == []

    await cart.handle_login("alice")
    assert quantities(cart) == {"Keyboard": 2}


@pytest.mark.asyncio
async def test_initialize_prunes_lines_without_product(make_cart, session_factory, catalog):
    async with session_factory() as db:
        db.add(CartItemModel(user_id="alice", product_id="gone", quantity=1))
        await db.commit()

    cart = make_cart()
    result = await cart.initialize("alice")

    assert result.ok
    assert cart.items == []
    assert await RemoteCartRepository(session_factory, "alice").prune_invalid() == 0


@pytest.mark.asyncio
async def test_remote_stock_drop_caps_line(make_cart, products, session_factory, catalog):
    cart = make_cart()
    await cart.initialize("alice")
    await cart.add_to_cart(catalog["keyboard"].id, 2)
    await products.update_product(catalog["keyboard"].id, stock=1)

    result = await cart.add_to_cart(catalog["keyboard"].id, 1)

    assert result.ok
    assert result.warnings == ("Only 1 units available in stock.",)
    assert quantities(cart) == {"Keyboard": 1}
    (remote,) = await RemoteCartRepository(session_factory, "alice").load()
    assert remote.quantity == 1
    assert remote.product.stock == 1


@pytest.mark.asyncio
async def test_remote_stock_sold_out_drops_line(make_cart, products, session_factory, catalog):
    cart = make_cart()
    await cart.initialize("alice")
    await cart.add_to_cart(catalog["keyboard"].id, 2)
    await products.update_product(catalog["keyboard"].id, stock=0)

    result = await cart.add_to_cart(catalog["keyboard"].id, 1)

    assert result.error.kind == "validation"
    assert result.error.message == "Keyboard is out of stock."
    assert cart.items == []
    assert await RemoteCartRepository(session_factory, "alice").load() == []


@pytest.mark.asyncio
async def test_failed_remote_write_reverts_state(make_cart, session_factory, catalog):
    repo = FlakyRemoteRepository(session_factory, "alice")
    cart = make_cart(remote=lambda user_id: repo)
    await cart.initialize("alice")
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    before = cart.items

    repo.fail = True
    added = await cart.add_to_cart(catalog["mouse"].id, 1)
    removed = await cart.remove_from_cart(before[0].id)

    assert added.error.kind == "persistence"
    assert removed.error.kind == "persistence"
    assert cart.items == before


@pytest.mark.asyncio
async def test_add_then_remove_restores_line_set(make_cart, catalog):
    cart = make_cart()
    await cart.initialize()
    await cart.add_to_cart(catalog["mouse"].id, 2)
    before = cart.items

    added = await cart.add_to_cart(catalog["keyboard"].id, 1)
    await cart.remove_from_cart(added.value.id)

    assert cart.items == before


@pytest.mark.asyncio
async def test_sessions_of_same_user_merge_quantities(redis_client, make_cart, session_factory, catalog):
    laptop = make_cart()
    phone = make_cart(store=SessionStore("tab-2", client=redis_client))
    await laptop.initialize("alice")
    await phone.initialize("alice")

    await laptop.add_to_cart(catalog["keyboard"].id, 2)
    result = await phone.add_to_cart(catalog["keyboard"].id, 2)

    assert result.ok
    assert quantities(phone) == {"Keyboard": 4}
    (line,) = await RemoteCartRepository(session_factory, "alice").load()
    assert line.quantity == 4
    assert phone.items[0].id == line.id


@pytest.mark.asyncio
async def test_merged_quantity_from_other_session_is_capped(redis_client, make_cart, session_factory, catalog):
    laptop = make_cart()
    phone = make_cart(store=SessionStore("tab-2", client=redis_client))
    await laptop.initialize("alice")
    await phone.initialize("alice")

    await laptop.add_to_cart(catalog["keyboard"].id, 3)
    result = await phone.add_to_cart(catalog["keyboard"].id, 3)

    assert result.ok
    assert result.warnings == ("Only 5 units available in stock.",)
    assert quantities(phone) == {"Keyboard": 5}
    (line,) = await RemoteCartRepository(session_factory, "alice").load()
    assert line.quantity == 5


@pytest.mark.asyncio
async def test_driver_connection_error_reverts_and_is_persistence(make_cart, session_factory, catalog):
    cart = make_cart(remote=lambda user_id: UnreachableRemoteRepository(session_factory, user_id))
    await cart.initialize("alice")

    result = await cart.add_to_cart(catalog["mouse"].id, 1)

    assert result.error.kind == "persistence"
    assert result.error.message == "Cart storage is unreachable"
    assert cart.items == []
    assert not cart.is_loading


@pytest.mark.asyncio
async def test_unexpected_error_still_reverts_state(redis_client, make_cart, catalog):
    store = BrokenSessionStore("tab-broken", client=redis_client)
    cart = make_cart(store=store)
    await cart.initialize()
    await cart.add_to_cart(catalog["keyboard"].id, 1)
    before = cart.items

    store.fail = True
    with pytest.raises(RuntimeError):
        await cart.add_to_cart(catalog["mouse"].id, 1)

    assert cart.items == before
    assert not cart.is_loading


@pytest.mark.asyncio
async def test_failed_load_marks_cart_for_reload(monkeypatch, make_cart, catalog):
    cart = make_cart()

    async def broken_load(self):
        raise PersistenceError("Failed to load cart")

    with monkeypatch.context() as patch:
        patch.setattr(RemoteCartRepository, "load", broken_load)
        result = await cart.initialize("alice")

    assert result.error.kind == "persistence"
    assert cart.needs_reload

    assert (await cart.initialize("alice")).ok
    assert not cart.needs_reload
