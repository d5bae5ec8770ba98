"""A second server on an already locked data directory must fail to start."""

from .. import assertions
from ..management.process_manager import LOCK_CONTENTION_SIGNATURES
from ..scenario import Scenario


async def run(scenario: Scenario) -> None:
    dbpath = scenario.data_path("lock_file_fail_to_open")

    first = await scenario.start_server(dbpath=dbpath)

    scenario.manager.clear_program_output()
    second = await scenario.try_start_server(name="mongod-b", dbpath=dbpath, clean_data=False)

    assertions.expect_equal(second, None, "second server started on a locked dbpath")
    assertions.expect_true(
        scenario.manager.program_output.contains_any(LOCK_CONTENTION_SIGNATURES),
        "no lock file error in the server output",
    )
    assertions.expect_true(
        first.is_running and scenario.manager.is_alive(first),
        "first server stopped running",
    )
