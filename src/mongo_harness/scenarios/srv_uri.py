"""The external client connects through an SRV connection string."""

from .. import assertions
from ..client.resolver import ConnectionResolver
from ..management.program_runner import ExitCode
from ..scenario import Scenario

# The SRV test records point at localhost:27017
SRV_TARGET_PORT = 27017


async def run(scenario: Scenario) -> None:
    await scenario.start_server(port=SRV_TARGET_PORT)

    resolver = ConnectionResolver(scenario.manager)
    uri = scenario.settings.srv_test_uri

    targets = resolver.resolve(uri)
    assertions.expect_equal(len(targets), 1, "SRV string should name one service")
    assertions.expect_true(targets[0].srv, "SRV string was not recognised")

    result = await resolver.probe(uri)
    assertions.expect_equal(
        result.exit_code,
        ExitCode.SUCCESS,
        "Failed to connect with a `mongodb+srv://` style URI.",
    )
