import pytest
from conftest import make_cr, make_service

from kmongo.errors import UnknownTopology
from kmongo.modes import ModeRegistry
from kmongo.modes.replica import ReplicaSetMode


def test_replica_set_is_registered(world):
    base = world.build()
    assert isinstance(ModeRegistry().create(base), ReplicaSetMode)
    assert "ReplicaSet" in ModeRegistry().list_mode_names()


def test_unknown_topology(world):
    base = world.build(make_cr(type="Sharded"))
    with pytest.raises(UnknownTopology):
        ModeRegistry().create(base)


def test_register_rejects_non_modes():
    with pytest.raises(ValueError):
        ModeRegistry.register("Broken")(object)


def test_pre_config_ensures_secrets(world):
    cr = make_cr(members=1, imagePullSecret={"username": "u", "password": "p"})
    base = world.build(cr)
    world.store.secrets.clear()

    ReplicaSetMode(base).pre_config()

    created = [e[1] for e in world.journal if e[0] == "create_secret"]
    assert created == [
        "demo-keyfile-secret",
        "demo-root",
        "demo-clusteradmin",
        "demo-clustermonitor",
        "demo-image-pull-secret",
    ]
    # waiting on member services and the host directory
    assert world.cr.status.state == "Reconciling"


def test_pre_config_leaves_state_when_shared_objects_exist(world):
    base = world.build(make_cr(members=1))
    world.store.services["demo-mongodb-0"] = make_service(
        "demo-mongodb-0", 31000, base.instance_labels()
    )
    world.store.add_directory(["10.0.0.1:31000"])

    ReplicaSetMode(base).pre_config()

    assert world.cr.status.state == "Unknown"
    assert [e for e in world.journal if e[0] == "create_secret"] == [
        ("create_secret", "demo-keyfile-secret")
    ]
