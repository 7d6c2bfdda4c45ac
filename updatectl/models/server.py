"""Execution targets."""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class LocalHost(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    display: str = "local"


class RemoteHost(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    user: str
    host: str

    @property
    def ssh_target(self) -> str:
        return f"{self.user}@{self.host}"


Connection = Union[LocalHost, RemoteHost]


class Server(BaseModel):
    """A named execution target; immutable once built."""

    model_config = ConfigDict(frozen=True)

    name: str
    connection: Connection = Field(discriminator="kind")

    @classmethod
    def local(cls, name: str = "localhost", display: str = "local") -> Server:
        return cls(name=name, connection=LocalHost(display=display))

    @classmethod
    def remote(cls, name: str, user: str, host: str) -> Server:
        return cls(name=name, connection=RemoteHost(user=user, host=host))

    @property
    def is_local(self) -> bool:
        return isinstance(self.connection, LocalHost)

    @property
    def display_host(self) -> str:
        if isinstance(self.connection, LocalHost):
            return self.connection.display
        return self.connection.ssh_target

    def __str__(self) -> str:
        return f"{self.name} ({self.display_host})"
