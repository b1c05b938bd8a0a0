import pytest
from conftest import FakeStore, api_error, directory_text

from kmongo.core import hostdir
from kmongo.errors import DirectoryMalformed, DirectoryUnavailable, ObjSyncError


def _hosts(n, base_port=31000):
    return [f"10.29.5.103:{base_port + i}" for i in range(n)]


def test_three_entries_all_vote():
    directory = {"datas": directory_text(_hosts(3)), "arbiters": ""}
    members = hostdir.resolve(directory, "replset-0")

    assert [m.id for m in members] == [0, 1, 2]
    assert [m.host for m in members] == _hosts(3)
    assert all(m.votes == 1 and m.priority == 1 for m in members)
    assert not any(m.arbiterOnly for m in members)


def test_eighth_entry_gets_no_vote():
    directory = {"datas": directory_text(_hosts(8))}
    members = hostdir.resolve(directory, "replset-0")

    assert len(members) == 8
    assert [m.votes for m in members] == [1] * 7 + [0]
    assert members[7].priority == 0


def test_arbiter_appended_after_data_with_next_id():
    directory = {
        "datas": directory_text(_hosts(2)),
        "arbiters": "_id:0,host:'10.29.5.104:32000'",
    }
    members = hostdir.resolve(directory, "replset-0")

    assert members[-1].host == "10.29.5.104:32000"
    assert members[-1].id == 2
    assert members[-1].arbiterOnly
    assert not members[-1].buildIndexes
    assert members[-1].votes == 1


def test_arbiter_past_seventh_member_does_not_vote():
    directory = {
        "datas": directory_text(_hosts(7)),
        "arbiters": "_id:0,host:'10.29.5.104:32000'",
    }
    members = hostdir.resolve(directory, "replset-0")
    assert members[-1].arbiterOnly
    assert members[-1].votes == 0


def test_more_than_fifty_entries_are_dropped():
    directory = {"datas": directory_text(_hosts(52))}
    members = hostdir.resolve(directory, "replset-0")
    assert len(members) == 50
    assert sum(m.votes for m in members) == 7


def test_self_scope_matches_own_address():
    directory = {
        "datas": directory_text(_hosts(3)),
        "arbiters": "_id:0,host:'10.29.5.104:32000'",
    }
    me = hostdir.resolve(directory, "replset-0", hostdir.SCOPE_SELF, my_host=_hosts(3)[1])
    assert [(m.id, m.host) for m in me] == [(1, _hosts(3)[1])]

    arbiter = hostdir.resolve(
        directory, "replset-0", hostdir.SCOPE_SELF, my_host="10.29.5.104:32000", arbiter=False
    )
    assert arbiter == []


def test_blank_lines_skipped_and_bad_lines_rejected():
    assert hostdir.entries("\n_id:0,host:'a:1'\n\n") == ["a:1"]
    with pytest.raises(DirectoryMalformed):
        hostdir.entries("_id:0,a:1")


def test_load_directory_missing_or_unreachable():
    store = FakeStore()
    with pytest.raises(DirectoryUnavailable):
        hostdir.load_directory(store, "hostconf", "db")

    def broken(namespace, name):
        raise api_error(500)

    store.get_config_map = broken
    with pytest.raises(DirectoryUnavailable):
        hostdir.load_directory(store, "hostconf", "db")


def test_clear_arbiter_empties_entry():
    store = FakeStore()
    store.add_directory(_hosts(2), arbiters=["10.29.5.104:32000"])
    hostdir.clear_arbiter(store, "hostconf", "db")

    data = store.config_maps["hostconf"].data
    assert data["arbiters"] == ""
    assert hostdir.data_hosts(data) == _hosts(2)


def test_clear_arbiter_write_failure_is_obj_sync():
    store = FakeStore()
    store.add_directory(_hosts(1), arbiters=["10.29.5.104:32000"])

    def refuse(namespace, name, body):
        raise api_error(500)

    store.replace_config_map = refuse
    with pytest.raises(ObjSyncError):
        hostdir.clear_arbiter(store, "hostconf", "db")
