"""Launch configuration for server processes and client TLS options."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError


class TLSMode(Enum):
    """Server TLS modes."""

    DISABLED = "disabled"
    ALLOW_TLS = "allowTLS"
    REQUIRE_TLS = "requireTLS"


@dataclass(frozen=True)
class ServerTLSOptions:
    """Server side TLS settings."""

    mode: TLSMode = TLSMode.DISABLED
    certificate_key_file: Optional[str] = None
    ca_file: Optional[str] = None
    crl_file: Optional[str] = None
    allow_invalid_certificates: bool = False

    def __post_init__(self):
        if self.mode is not TLSMode.DISABLED and not self.certificate_key_file:
            raise ConfigurationError(
                f"TLS mode {self.mode.value} requires a certificate key file",
                {"mode": self.mode.value},
            )
        if self.crl_file and not self.ca_file:
            raise ConfigurationError(
                "A CRL file is only honoured together with a CA file",
                {"crl_file": self.crl_file},
            )

    @property
    def enabled(self) -> bool:
        return self.mode is not TLSMode.DISABLED

    def to_argv(self) -> List[str]:
        if not self.enabled:
            return []

        argv = [
            "--tlsMode",
            self.mode.value,
            "--tlsCertificateKeyFile",
            self.certificate_key_file,
        ]
        if self.ca_file:
            argv += ["--tlsCAFile", self.ca_file]
        if self.crl_file:
            argv += ["--tlsCRLFile", self.crl_file]
        if self.allow_invalid_certificates:
            argv.append("--tlsAllowInvalidCertificates")
        return argv


@dataclass(frozen=True)
class ClientTLSOptions:
    """TLS settings presented by a client."""

    certificate_key_file: Optional[str] = None
    ca_file: Optional[str] = None
    allow_invalid_certificates: bool = False

    def to_driver_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments understood by pymongo.MongoClient."""
        kwargs: Dict[str, Any] = {"tls": True}
        if self.certificate_key_file:
            kwargs["tlsCertificateKeyFile"] = self.certificate_key_file
        if self.ca_file:
            kwargs["tlsCAFile"] = self.ca_file
        if self.allow_invalid_certificates:
            kwargs["tlsAllowInvalidCertificates"] = True
        return kwargs

    def to_shell_args(self) -> List[str]:
        """Arguments understood by the external client program."""
        args = ["--tls"]
        if self.allow_invalid_certificates:
            args.append("--tlsAllowInvalidCertificates")
        if self.certificate_key_file:
            args += ["--tlsCertificateKeyFile", self.certificate_key_file]
        if self.ca_file:
            args += ["--tlsCAFile", self.ca_file]
        return args


@dataclass(frozen=True)
class ServerConfig:
    """Immutable launch configuration for one server process.

    ``port=None`` asks the process manager to allocate a free port; the
    manager launches a resolved copy and never mutates this value.
    ``clean_data`` wipes the data directory before launch.
    """

    dbpath: str
    port: Optional[int] = None
    bind_ip: str = "127.0.0.1"
    auth: bool = False
    tls: ServerTLSOptions = field(default_factory=ServerTLSOptions)
    clean_data: bool = True
    extra_flags: Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.dbpath:
            raise ConfigurationError("Server configuration requires a dbpath")
        if self.port is not None and not (0 < self.port < 65536):
            raise ConfigurationError(f"Invalid port number: {self.port}")

    @property
    def endpoint(self) -> str:
        return f"{self.bind_ip}:{self.port}"

    def to_argv(self) -> List[str]:
        """Render the server command-line arguments."""
        if self.port is None:
            raise ConfigurationError(
                "Port must be resolved before rendering arguments",
                {"dbpath": self.dbpath},
            )

        argv = [
            "--port",
            str(self.port),
            "--bind_ip",
            self.bind_ip,
            "--dbpath",
            self.dbpath,
        ]
        if self.auth:
            argv.append("--auth")
        argv += self.tls.to_argv()

        for flag, value in self.extra_flags.items():
            argv.append(flag if flag.startswith("-") else f"--{flag}")
            if value is not None:
                argv.append(str(value))
        return argv

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tls"]["mode"] = self.tls.mode.value
        return data
