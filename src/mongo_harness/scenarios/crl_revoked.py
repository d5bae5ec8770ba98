"""A client certificate listed in the server's CRL is refused at handshake."""

from .. import assertions
from ..client.resolver import ConnectionResolver
from ..errors import ConnectError
from ..management.program_runner import ExitCode
from ..management.server_config import ClientTLSOptions, ServerTLSOptions, TLSMode
from ..scenario import Scenario

ATTEMPTS = 3


async def run(scenario: Scenario) -> None:
    settings = scenario.settings
    server_tls = ServerTLSOptions(
        mode=TLSMode.REQUIRE_TLS,
        certificate_key_file=settings.tls_fixture("server.pem"),
        ca_file=settings.tls_fixture("ca.pem"),
        crl_file=settings.tls_fixture("crl_client_revoked.pem"),
    )
    scenario.shutdown_tls = ClientTLSOptions(
        certificate_key_file=settings.tls_fixture("client.pem"),
        ca_file=settings.tls_fixture("ca.pem"),
        allow_invalid_certificates=True,
    )

    handle = await scenario.start_server(tls=server_tls)

    revoked = ClientTLSOptions(
        certificate_key_file=settings.tls_fixture("client_revoked.pem"),
        allow_invalid_certificates=True,
    )
    resolver = ConnectionResolver(scenario.manager)

    # Repeated so an accept-then-drop server shows up as flaky
    for _ in range(ATTEMPTS):
        result = await resolver.probe_endpoint(handle.host, handle.port, revoked)
        assertions.expect_equal(
            result.exit_code,
            ExitCode.CONNECT_FAILED,
            "client with a revoked certificate was not refused",
        )

    assertions.expect_throws(
        lambda: scenario.connect(handle, tls=revoked),
        "revoked certificate completed the handshake",
        ConnectError,
    )
