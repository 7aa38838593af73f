"""Credentials, secret-bearing provisioning outputs and their strict decoders."""
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from jsonschema import ValidationError, validate
from pydantic import SecretStr

from ..config import Config
from ..errors import MalformedOutput
from ..logging import register_secret

MASTER_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "ip": {"type": "string", "minLength": 1},
        "token": {"type": "string", "minLength": 1},
        "kubeconfig": {"type": "string", "minLength": 1},
    },
    "required": ["ip", "token", "kubeconfig"],
    "additionalProperties": False,
}

WORKER_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "ip": {"type": "string", "minLength": 1},
    },
    "required": ["ip"],
    "additionalProperties": False,
}


def _secret(value: str) -> SecretStr:
    register_secret(value)
    return SecretStr(value)


@dataclass(frozen=True)
class Credential:
    """Private key material bound to a host identity."""
    host: str
    value: SecretStr

    @classmethod
    def from_text(cls, host: str, material: str) -> "Credential":
        # .env files commonly carry keys on one line with escaped newlines
        if "\n" not in material and "\\n" in material:
            material = material.replace("\\n", "\n")
        return cls(host=host, value=_secret(material))


class SecretProvider(ABC):
    """Resolves the credential for a host name, or None when there is none."""

    @abstractmethod
    def resolve(self, host_name: str) -> Optional[Credential]:
        raise NotImplementedError

    def describe(self, host_name: str) -> str:
        """Human-readable location of the credential, used in error messages."""
        return f"credential for {host_name}"


class EnvSecretProvider(SecretProvider):
    """Looks up ``<UPPERCASED_HOST_NAME>_PRIVATE_KEY`` in the environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None, suffix: str = Config.PRIVATE_KEY_SUFFIX):
        self.environ = environ if environ is not None else os.environ
        self.suffix = suffix

    def env_var_name(self, host_name: str) -> str:
        return f"{host_name.upper()}{self.suffix}"

    def resolve(self, host_name: str) -> Optional[Credential]:
        material = self.environ.get(self.env_var_name(host_name), "")
        if not material.strip():
            return None
        return Credential.from_text(host_name, material)

    def describe(self, host_name: str) -> str:
        return f"environment variable {self.env_var_name(host_name)}"


class StaticSecretProvider(SecretProvider):
    """Serves credentials from an in-memory mapping of host name to key material."""

    def __init__(self, keys: Mapping[str, str]):
        self.keys = dict(keys)

    def resolve(self, host_name: str) -> Optional[Credential]:
        material = self.keys.get(host_name)
        if not material:
            return None
        return Credential.from_text(host_name, material)


@dataclass(frozen=True)
class JoinInfo:
    """The part of the master's bundle a worker is allowed to see."""
    ip: str
    token: SecretStr


@dataclass(frozen=True)
class SecretBundle:
    """Connection metadata and secrets emitted by the master's create script."""
    ip: str
    token: SecretStr
    kubeconfig: SecretStr

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SecretBundle":
        return cls(
            ip=payload["ip"],
            token=_secret(payload["token"]),
            kubeconfig=_secret(payload["kubeconfig"]),
        )

    def join_info(self) -> JoinInfo:
        return JoinInfo(ip=self.ip, token=self.token)


@dataclass(frozen=True)
class NodeDescriptor:
    """A worker node that joined the cluster."""
    name: str
    ip: str


def decode_payload(stdout: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Decode stdout as exactly one JSON object matching ``schema``.

    Raises:
        MalformedOutput: If stdout is not a single JSON object or breaks the schema
    """
    text = stdout.strip()
    if not text:
        raise MalformedOutput("script produced no output", stdout)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"not a single JSON object ({e.msg})", stdout) from e
    try:
        validate(instance=payload, schema=schema)
    except ValidationError as ve:
        raise MalformedOutput(ve.message, stdout) from ve
    return payload


def decode_master_output(stdout: str) -> SecretBundle:
    return SecretBundle.from_payload(decode_payload(stdout, MASTER_OUTPUT_SCHEMA))


def decode_worker_output(name: str, stdout: str) -> NodeDescriptor:
    payload = decode_payload(stdout, WORKER_OUTPUT_SCHEMA)
    return NodeDescriptor(name=name, ip=payload["ip"])
