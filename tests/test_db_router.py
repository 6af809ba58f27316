import pytest

from app.db_router import BranchRouter, ConnectionTarget, EngineRegistry, select_branch
from app.errors import InvalidBranchSelection
from conftest import FakeEngine, make_branch, make_user


def _registry():
    created = []

    def factory(target):
        engine = FakeEngine(name=target.key)
        created.append(engine)
        return engine

    return EngineRegistry(engine_factory=factory, max_engines=2), created


def _router(lookup=None):
    registry, created = _registry()
    return BranchRouter(registry, register_lookup=lookup or (lambda branch_id: [])), registry, created


def test_register_set_starts_with_primary_and_is_deduplicated() -> None:
    router, _, _ = _router(lookup=lambda branch_id: [3, 1, 3, 2])
    registers = router.resolve_registers(make_branch(kasa_no=1))
    assert registers == (1, 3, 2)


def test_inline_registers_skip_the_lookup() -> None:
    calls = []

    def lookup(branch_id):
        calls.append(branch_id)
        return [9]

    router, _, _ = _router(lookup=lookup)
    assert router.resolve_registers(make_branch(kasa_no=2, kasalar=[4, 2])) == (2, 4)
    assert calls == []


def test_branch_without_id_uses_primary_register() -> None:
    router, _, _ = _router(lookup=lambda branch_id: [5])
    assert router.resolve_registers(make_branch(id=None, kasa_no=3)) == (3,)


def test_lookup_failure_degrades_to_primary_register() -> None:
    def broken(branch_id):
        raise RuntimeError("catalog unreachable")

    router, _, _ = _router(lookup=broken)
    assert router.resolve_registers(make_branch(kasa_no=4)) == (4,)


def test_resolve_uses_selected_branch() -> None:
    user = make_user(
        branches=[make_branch(id=1, name="A", db_name="a"), make_branch(id=2, name="B", db_name="b", kasa_no=5)],
        selected_branch=1,
    )
    router, _, _ = _router()
    route = router.resolve(user)
    assert route.branch.name == "B"
    assert route.branch_index == 1
    assert route.primary_register == 5
    assert route.registers == (5,)


@pytest.mark.parametrize("index", [None, -1, 2])
def test_invalid_branch_index(index) -> None:
    user = make_user(branches=[make_branch(), make_branch(id=2)])
    with pytest.raises(InvalidBranchSelection):
        select_branch(user, index)


def test_user_without_branches_cannot_be_routed() -> None:
    router, _, _ = _router()
    with pytest.raises(InvalidBranchSelection):
        router.resolve(make_user(branches=[]))


def test_same_target_shares_one_engine() -> None:
    router, registry, created = _router()
    user = make_user(branches=[make_branch(id=1, name="A"), make_branch(id=2, name="A again", db_password="other")])

    first = router.resolve(user, 0)
    second = router.resolve(user, 1)
    assert first.engine is second.engine
    assert len(created) == 1
    assert len(registry) == 1


def test_target_password_is_not_part_of_identity() -> None:
    a = ConnectionTarget("h", 5432, "db", "u", password="one")
    b = ConnectionTarget("h", 5432, "db", "u", password="two")
    assert a == b
    assert hash(a) == hash(b)
    assert a.key == "h:5432:db:u"
    assert "one" not in repr(a)


def test_registry_evicts_least_recently_used() -> None:
    registry, created = _registry()
    t1 = ConnectionTarget("h", 5432, "one", "u")
    t2 = ConnectionTarget("h", 5432, "two", "u")
    t3 = ConnectionTarget("h", 5432, "three", "u")

    registry.get(t1)
    registry.get(t2)
    registry.get(t1)
    registry.get(t3)

    assert t1 in registry
    assert t2 not in registry
    assert created[1].disposed


def test_registry_dispose() -> None:
    registry, created = _registry()
    registry.get(ConnectionTarget("h", 5432, "one", "u"))
    registry.dispose()
    assert len(registry) == 0
    assert created[0].disposed
