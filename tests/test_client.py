import pytest
from conftest import member
from pymongo.errors import AutoReconnect, ConfigurationError, ConnectionFailure, OperationFailure

from kmongo.errors import CommandNotOk, MemberRoleMismatch, TransportError
from kmongo.mongo import client as mongo_client
from kmongo.mongo.client import ReplSetClient
from kmongo.mongo.models import MemberStatus


class FakeAdminDB:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def command(self, command, value=1, **kwargs):
        self.calls.append((command, value, kwargs))
        resp = self.responses[command]
        if isinstance(resp, Exception):
            raise resp
        return resp


class FakePyMongo:
    def __init__(self, **responses):
        self.admin = FakeAdminDB(responses)
        self.closed = False

    def __getitem__(self, name):
        assert name == "admin"
        return self.admin

    def close(self):
        self.closed = True


def _status(*members):
    return {
        "ok": 1,
        "members": [
            {"_id": i, "name": host, "stateStr": state_str, "state": state, "health": 1}
            for i, (host, state_str, state) in enumerate(members)
        ],
    }


def _config(*hosts, version=3):
    return {
        "ok": 1,
        "config": {
            "_id": "replset-0",
            "version": version,
            "members": [
                {"_id": i, "host": h, "votes": 1, "priority": 1} for i, h in enumerate(hosts)
            ],
        },
    }


def test_check_member_status_cross_checks_state_codes():
    fake = FakePyMongo(replSetGetStatus=_status(
        ("a:1", "PRIMARY", 1),
        ("b:1", "PRIMARY", 2),
        ("c:1", "SECONDARY", 2),
        ("d:1", "RECOVERING", 3),
        ("e:1", "ARBITER", 7),
    ))
    unknown, healthy = ReplSetClient(fake, ["a:1"]).check_member_status()

    assert unknown == ["b:1", "d:1"]
    assert healthy == ["a:1", "c:1", "e:1"]


def test_step_down_connection_drop_is_success():
    fake = FakePyMongo(replSetStepDown=AutoReconnect("connection closed"))
    ReplSetClient(fake, ["a:1"]).step_down()
    assert fake.admin.calls[0][:2] == ("replSetStepDown", 60)


def test_step_down_refused_is_command_not_ok():
    fake = FakePyMongo(replSetStepDown=OperationFailure("not primary", code=10107))
    with pytest.raises(CommandNotOk):
        ReplSetClient(fake).step_down()


def test_run_command_error_mapping():
    fake = FakePyMongo(
        replSetGetStatus={"ok": 0, "errmsg": "no replset config has been received"},
        replSetGetConfig=ConnectionFailure("refused"),
    )
    rs = ReplSetClient(fake, ["a:1"])
    with pytest.raises(CommandNotOk):
        rs.get_status()
    with pytest.raises(TransportError):
        rs.read_config()


def test_add_members_bumps_version_and_forces():
    fake = FakePyMongo(replSetGetConfig=_config("a:1", "b:1"), replSetReconfig={"ok": 1})
    assert ReplSetClient(fake).add_members([member("c:1")])

    command, doc, kwargs = fake.admin.calls[-1]
    assert command == "replSetReconfig"
    assert kwargs == {"force": True}
    assert doc["version"] == 4
    assert [m["host"] for m in doc["members"]] == ["a:1", "b:1", "c:1"]
    assert doc["members"][-1]["_id"] == 2


def test_add_existing_member_writes_nothing():
    fake = FakePyMongo(replSetGetConfig=_config("a:1"), replSetReconfig={"ok": 1})
    assert not ReplSetClient(fake).add_members([member("a:1")])
    assert [c[0] for c in fake.admin.calls] == ["replSetGetConfig"]


def test_remove_members_bumps_version():
    fake = FakePyMongo(replSetGetConfig=_config("a:1", "b:1"), replSetReconfig={"ok": 1})
    assert ReplSetClient(fake).remove_members([member("b:1")])
    _, doc, _ = fake.admin.calls[-1]
    assert doc["version"] == 4
    assert [m["host"] for m in doc["members"]] == ["a:1"]


def test_create_user_tolerates_existing_user():
    fake = FakePyMongo(createUser=OperationFailure("User \"x@admin\" already exists", code=51003))
    ReplSetClient(fake).create_user("x", "pw", [{"role": "root", "db": "admin"}])


def test_cluster_monitor_also_reads_local():
    fake = FakePyMongo(createUser={"ok": 1})
    ReplSetClient(fake).create_user_by_secret({
        "MONGO_USER": "clusterMonitor",
        "MONGO_PASSWORD": "pw",
        "MONGO_ROLE": "clusterMonitor",
        "MONGO_DB": "admin",
    })
    _, user, kwargs = fake.admin.calls[0]
    assert user == "clusterMonitor"
    assert {"role": "read", "db": "local"} in kwargs["roles"]


def test_primary_host_and_role_check():
    statuses = [
        MemberStatus(name="a:1", stateStr="SECONDARY", state=2),
        MemberStatus(name="b:1", stateStr="PRIMARY", state=1),
    ]
    assert mongo_client.primary_host(statuses) == "b:1"
    mongo_client.check_member_roles(statuses)

    statuses.append(MemberStatus(name="c:1", stateStr="ARBITER", state=2))
    with pytest.raises(MemberRoleMismatch):
        mongo_client.check_member_roles(statuses)


def test_dial_builds_client(monkeypatch):
    seen = {}

    def fake_client(**kwargs):
        seen.update(kwargs)
        return FakePyMongo()

    monkeypatch.setattr(mongo_client.pm, "MongoClient", fake_client)
    with mongo_client.dial(["a:1"], username="clusterAdmin", password="pw", direct=True) as rs:
        assert rs.addrs == ["a:1"]

    assert seen["directConnection"] is True
    assert seen["authSource"] == "admin"
    assert seen["serverSelectionTimeoutMS"] == 30000


def test_dial_without_addresses_is_transport_error(monkeypatch):
    monkeypatch.setattr(mongo_client.pm, "MongoClient", lambda **kw: FakePyMongo())
    with pytest.raises(TransportError):
        mongo_client.dial([])


def test_dial_maps_client_configuration_errors(monkeypatch):
    def bad_client(**kwargs):
        raise ConfigurationError("port must be an integer")

    monkeypatch.setattr(mongo_client.pm, "MongoClient", bad_client)
    with pytest.raises(TransportError, match="port must be an integer"):
        mongo_client.dial(["a:b"])
