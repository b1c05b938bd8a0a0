from conftest import make_cr, make_settings

from kmongo.core.pods import LABEL_APP, LABEL_ARBITER, LABEL_REVISION_HASH
from kmongo.services.builder import ResourceBuilder, command_repl_set


def _builder(**spec):
    cr = make_cr(status={"currentRevision": "demo-abc"}, **spec)
    return ResourceBuilder(cr, make_settings())


def test_selector_excludes_revision():
    builder = _builder(members=1)
    body = builder.statefulset("demo-mongodb-0", {"x": "y"}, command_repl_set("replset-0"))

    selector = body["spec"]["selector"]["matchLabels"]
    labels = body["spec"]["template"]["metadata"]["labels"]
    assert selector == {"x": "y", LABEL_APP: "demo-mongodb-0"}
    assert labels[LABEL_REVISION_HASH] == "demo-abc"
    assert body["spec"]["updateStrategy"]["type"] == "OnDelete"
    assert body["spec"]["volumeClaimTemplates"][0]["spec"]["resources"]["requests"]["storage"] == "1Gi"


def test_exporter_sidecar_when_enabled():
    builder = _builder(members=1, metricsExporterSpec={"enable": True})
    body = builder.statefulset("demo-mongodb-0", {}, command_repl_set("replset-0"))
    containers = body["spec"]["template"]["spec"]["containers"]
    assert [c["name"] for c in containers] == ["mongo", "metrics-exporter"]
    assert "clusterMonitor:123456@" in containers[1]["env"][0]["value"]


def test_arbiter_has_no_volume_claim():
    builder = _builder(members=1, arbiter=True)
    body = builder.statefulset(
        builder.arbiter_sts_name(), {LABEL_ARBITER: "true"}, command_repl_set("replset-0")
    )
    assert "volumeClaimTemplates" not in body["spec"]
    mounts = body["spec"]["template"]["spec"]["containers"][0]["volumeMounts"]
    assert all(m["mountPath"] != "/data/db" for m in mounts)


def test_custom_config_adds_flag_and_volume():
    command = command_repl_set("replset-0", custom_config="mongo-conf")
    assert command[-2:] == ["--config", "/etc/mongo-config/mongod.yaml"]

    builder = _builder(members=1, customConfigRef="mongo-conf")
    body = builder.statefulset("demo-mongodb-0", {}, command)
    volumes = body["spec"]["template"]["spec"]["volumes"]
    assert {"name": "demo-config-volume", "configMap": {"name": "mongo-conf", "defaultMode": 256}} in volumes


def test_owned_objects_point_at_resource():
    builder = _builder()
    secret = builder.keyfile_secret()
    assert secret["metadata"]["ownerReferences"][0]["kind"] == "MongoDB"
    assert builder.metric_service("demo-mongodb-0", {})["spec"]["selector"] == {
        LABEL_APP: "demo-mongodb-0"
    }
