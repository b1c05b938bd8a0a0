"""Documents exchanged with mongod's replication admin commands."""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

PRIMARY = "PRIMARY"
SECONDARY = "SECONDARY"
ARBITER = "ARBITER"

# stateStr -> the numeric state a healthy member reports alongside it
ROLE_STATES = {PRIMARY: 1, SECONDARY: 2, ARBITER: 7}

MAX_MEMBERS = 50
MAX_VOTING_MEMBERS = 7


class Member(BaseModel):
    """One entry of a replica set configuration's members array."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int = Field(default=0, alias="_id")
    host: str
    votes: int = 0
    priority: float = 0
    arbiterOnly: bool = False
    buildIndexes: bool = True

    def to_document(self):
        return self.model_dump(by_alias=True, exclude_none=True)


class RSConfig(BaseModel):
    """Result of replSetGetConfig, written back with replSetReconfig."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    version: int = 1
    members: List[Member] = Field(default_factory=list)
    protocolVersion: Optional[int] = None
    settings: Optional[Dict[str, Any]] = None

    def to_document(self):
        doc = self.model_dump(by_alias=True, exclude_none=True)
        doc["members"] = [m.to_document() for m in self.members]
        return doc


class MemberStatus(BaseModel):
    """A member as reported by replSetGetStatus."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(alias="name")
    stateStr: str = ""
    state: int = 0
    health: int = 0
    id: int = Field(default=0, alias="_id")
    syncSourceHost: str = ""

    def role_matches_state(self):
        expected = ROLE_STATES.get(self.stateStr)
        return expected is not None and expected == self.state


class ReplStatus(BaseModel):
    """The repl section of serverStatus for a single node."""

    model_config = ConfigDict(extra="ignore")

    primary: str = ""
    me: str = ""
    ismaster: bool = False
    secondary: bool = False
    arbiterOnly: bool = False


def members_to_shell(members):
    """JSON array of members for embedding in a mongo shell script."""
    return json.dumps([m.to_document() for m in members], separators=(",", ":"))
