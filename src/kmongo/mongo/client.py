"""Replication admin commands over pymongo."""

import logging

import pymongo as pm
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    NotPrimaryError,
    OperationFailure,
    PyMongoError,
)

from kmongo.errors import CommandNotOk, MemberRoleMismatch, TransportError
from kmongo.mongo import members as member_algebra
from kmongo.mongo.models import (
    ARBITER,
    PRIMARY,
    ROLE_STATES,
    SECONDARY,
    MemberStatus,
    ReplStatus,
    RSConfig,
)

logger = logging.getLogger(__name__)

ADMIN_DB = "admin"
MONGO_PORT = 27017
STEP_DOWN_SECONDS = 60


def dial(addrs, username=None, password=None, direct=False, timeout=30):
    """Open a client against one or more host:port addresses.

    With direct=True exactly one address is expected and no replica set
    discovery happens, so a node that lost its set can still be queried.
    """
    if not addrs:
        raise TransportError("no mongo address to dial")
    timeout_ms = int(timeout * 1000)
    kwargs = {
        "host": list(addrs),
        "directConnection": direct,
        "serverSelectionTimeoutMS": timeout_ms,
        "connectTimeoutMS": timeout_ms,
        "socketTimeoutMS": timeout_ms,
    }
    if username:
        kwargs.update(username=username, password=password, authSource=ADMIN_DB)
    logger.debug(f"Dialing mongo {addrs} (direct: {direct})")
    try:
        client = pm.MongoClient(**kwargs)
    except PyMongoError as e:
        raise TransportError(f"cannot open client for {addrs}: {e}") from e
    return ReplSetClient(client, addrs)


class ReplSetClient:
    """Thin wrapper mapping pymongo failures onto operator errors."""

    def __init__(self, client, addrs=None):
        self._client = client
        self.addrs = list(addrs or [])

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._client.close()

    def run_command(self, command, value=1, **kwargs):
        """Run an admin command and return its response document."""
        try:
            resp = self._client[ADMIN_DB].command(command, value, **kwargs)
        except OperationFailure as e:
            raise CommandNotOk(
                f"{command} failed on {self.addrs}: {e}", code=e.code, details=e.details
            ) from e
        except ConnectionFailure as e:
            raise TransportError(f"{command} could not reach {self.addrs}: {e}") from e

        if resp.get("ok") != 1:
            raise CommandNotOk(f"{command} returned {resp.get('errmsg', resp)}", details=resp)
        return resp

    def read_config(self):
        resp = self.run_command("replSetGetConfig")
        return RSConfig.model_validate(resp["config"])

    def write_config(self, cfg):
        """Force a new configuration; cfg.version must already be bumped."""
        logger.info(f"Reconfiguring replica set {cfg.id} to version {cfg.version}")
        self.run_command("replSetReconfig", cfg.to_document(), force=True)

    def get_status(self):
        resp = self.run_command("replSetGetStatus")
        return [MemberStatus.model_validate(m) for m in resp.get("members", [])]

    def get_node_info(self):
        """The repl section of serverStatus for the connected node."""
        resp = self.run_command("serverStatus", 1, repl=1)
        return ReplStatus.model_validate(resp.get("repl", {}))

    def step_down(self, seconds=STEP_DOWN_SECONDS):
        """Ask the primary to step down.

        The primary closes its connections once it steps down, so a dropped
        connection here means the command took effect.
        """
        try:
            self._client[ADMIN_DB].command("replSetStepDown", seconds)
        except NotPrimaryError as e:
            raise CommandNotOk(f"replSetStepDown sent to a non-primary: {e}") from e
        except OperationFailure as e:
            raise CommandNotOk(f"replSetStepDown failed: {e}", code=e.code, details=e.details) from e
        except (AutoReconnect, ConnectionFailure) as e:
            logger.info(f"Connection dropped during step down, treating as success: {e}")
        logger.info(f"Primary at {self.addrs} stepped down")

    def check_member_status(self):
        """Split members into (unknown_hosts, healthy_hosts) by role and state."""
        unknown, healthy = [], []
        for member in self.get_status():
            if member.stateStr not in ROLE_STATES:
                logger.warning(f"Member {member.host} reports no role: {member.stateStr}")
                unknown.append(member.host)
            elif not member.role_matches_state():
                logger.warning(
                    f"{member.stateStr} member {member.host} reports state {member.state}"
                )
                unknown.append(member.host)
            else:
                healthy.append(member.host)
        return unknown, healthy

    def add_members(self, new_members):
        """Merge members into the live configuration; no write when nothing is new."""
        cfg = self.read_config()
        merged, changed = member_algebra.merge(cfg.members, new_members)
        if not changed:
            logger.info(f"Members {member_algebra.hosts(new_members)} already configured")
            return False
        cfg.members = merged
        cfg.version += 1
        self.write_config(cfg)
        logger.info(f"Added members {member_algebra.hosts(new_members)}")
        return True

    def remove_members(self, old_members):
        """Drop members from the live configuration; no write when none matched."""
        cfg = self.read_config()
        remaining, changed = member_algebra.remove(cfg.members, old_members)
        if not changed:
            logger.info(f"Members {member_algebra.hosts(old_members)} not configured")
            return False
        cfg.members = remaining
        cfg.version += 1
        self.write_config(cfg)
        logger.info(f"Removed members {member_algebra.hosts(old_members)}")
        return True

    def create_user(self, user, password, roles):
        """Create a user in the admin database; an existing user is left alone."""
        try:
            self.run_command("createUser", user, pwd=password, roles=roles)
        except CommandNotOk as e:
            if "already exists" in str(e):
                logger.info(f"User {user} already exists")
                return
            raise
        logger.info(f"Created user {user}")

    def create_user_by_secret(self, data):
        """Create a user from a decoded MONGO_USER/MONGO_PASSWORD/MONGO_ROLE secret."""
        user = data["MONGO_USER"]
        role = data["MONGO_ROLE"]
        roles = [{"role": role, "db": data.get("MONGO_DB", ADMIN_DB)}]
        if role == "clusterMonitor":
            roles.append({"role": "read", "db": "local"})
        self.create_user(user, data["MONGO_PASSWORD"], roles)

    def change_user_password(self, user, password):
        self.run_command("updateUser", user, pwd=password)
        logger.info(f"Updated password for user {user}")


def primary_host(statuses):
    """Host of the member reporting PRIMARY, or ""."""
    for member in statuses:
        if member.stateStr == PRIMARY:
            return member.host
    return ""


def check_member_roles(statuses):
    """Raise on the first member whose state code disagrees with its role."""
    for member in statuses:
        if member.stateStr not in (PRIMARY, SECONDARY, ARBITER):
            raise MemberRoleMismatch(f"member {member.host} has no role: {member.stateStr}")
        if not member.role_matches_state():
            raise MemberRoleMismatch(
                f"{member.stateStr} member {member.host} status error: state {member.state}"
            )
