"""mongo shell bootstrap commands and the output markers they are judged by.

Before any credentialed driver connection can be made, the operator runs
the mongo shell inside a member container and scrapes its output. The
strings here are matched literally.
"""

MONGO_SHELL_EVAL_WITH_AUTH = "mongo -u root -p '%s' --eval '%s'"
MONGO_SHELL_EVAL_NO_AUTH = "mongo --eval '%s'"

RS_INITIATE = 'rs.initiate({_id: "%s", members: %s});'
RS_RECONFIG = 'rs.reconfig({_id: "%s", members: %s, force: true });'
RS_STATUS = "rs.status();"
DB_SERVER_STATUS_REPL_ME = "db.serverStatus().repl.me;"
CREATE_ROOT_USER = (
    'db.getSiblingDB("admin").createUser({user: "%s", pwd: "%s", '
    'roles: [{role: "root", db: "admin"}]});'
)

OK = '"ok" : 1'
RS_ALREADY_INITIALIZED = "AlreadyInitialized"
RS_ALREADY_INITIALIZED_MSG = "already initialized"
RS_CONFIG_INCOMPATIBLE = "NewReplicaSetConfigurationIncompatible"
CREATE_USER_SUCCESS = "Successfully added user"
NO_USERS_AUTHENTICATED = "no users authenticated"
NOT_AUTHORIZED_ON_ADMIN = "not authorized on admin to execute command"
NOT_MASTER = "not master"

# db.serverStatus().repl.me prints its value on the fifth line, after the shell banner
SERVER_STATUS_ME_LINE = 4


def eval_no_auth(js):
    return MONGO_SHELL_EVAL_NO_AUTH % js


def eval_with_auth(root_password, js):
    return MONGO_SHELL_EVAL_WITH_AUTH % (root_password, js)


def initiate_accepted(stdout):
    """Whether rs.initiate output means the set is (or already was) initiated."""
    return (
        OK in stdout
        or RS_ALREADY_INITIALIZED in stdout
        or RS_ALREADY_INITIALIZED_MSG in stdout
        or RS_CONFIG_INCOMPATIBLE in stdout
    )


def parse_repl_me(stdout):
    """Host printed by db.serverStatus().repl.me, or "" when the output is short."""
    lines = stdout.split("\n")
    if len(lines) <= SERVER_STATUS_ME_LINE:
        return ""
    return lines[SERVER_STATUS_ME_LINE].strip()
