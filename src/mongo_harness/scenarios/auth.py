"""Read/write permissions for basic, read-only and administrative principals."""

from .. import assertions
from ..client.auth_verifier import AuthVerifier
from ..client.principal import (
    BASIC_USER_ROLES,
    READ_ONLY_USER_ROLES,
    ROOT_ROLES,
    SYSTEM_ROLES,
    Principal,
)
from ..scenario import Scenario

COLLECTION = "jstests_auth_auth1"
DOCUMENT_COUNT = 1000

ROOT = Principal("root", "root", ROOT_ROLES, "admin")
SUPER = Principal("super", "super", SYSTEM_ROLES, "admin")
ELIOT = Principal("eliot", "eliot", BASIC_USER_ROLES, "test")
GUEST = Principal("guest", "guest", READ_ONLY_USER_ROLES, "test")


async def run(scenario: Scenario) -> None:
    handle = await scenario.start_server(auth=True)
    scenario.shutdown_credentials = (ROOT.username, ROOT.password)
    verifier = AuthVerifier()

    # First user goes in through the localhost exception
    db = scenario.connect(handle)
    verifier.create_principal(db, ROOT)
    verifier.verify_login(db, ROOT)
    db.run({"drop": COLLECTION}, "test")
    assertions.expect_command_worked(db.drop_all_users("test"))
    verifier.create_principal(db, SUPER)
    db.logout()

    admin = scenario.connect(handle)
    verifier.verify_login(admin, SUPER)
    verifier.create_principal(admin, ELIOT)
    verifier.create_principal(admin, GUEST)
    admin.logout()

    verifier.verify_read_denied(db, COLLECTION)
    verifier.verify_unauthorized(db)

    verifier.verify_login_rejected(db, ELIOT.username, "eliot2", ELIOT.database)
    verifier.verify_login(db, ELIOT)
    eliot = verifier.verify_password_change(db, ELIOT, "eliot2")

    assertions.expect_command_worked(
        db.insert(COLLECTION, [{"i": i} for i in range(DOCUMENT_COUNT)])
    )
    assertions.expect_equal(db.count(COLLECTION), DOCUMENT_COUNT, "A1")
    scan = assertions.expect_command_worked(db.find_all(COLLECTION))
    assertions.expect_equal(len(scan.payload["documents"]), DOCUMENT_COUNT, "A2")

    verifier.verify_profiled_user(db, eliot, COLLECTION)

    read_only = scenario.connect(handle)
    verifier.verify_login(read_only, GUEST)
    verifier.verify_read_only(read_only, COLLECTION, DOCUMENT_COUNT)

    # Sessions here carry one principal at a time
    verifier.verify_reauthentication(scenario.connect(handle), GUEST, eliot)

    db.logout()
    verifier.verify_login(db, SUPER)
    assertions.expect_equal(db.count(COLLECTION), DOCUMENT_COUNT, "D1")
    assertions.expect_command_worked(db.insert(COLLECTION, [{"i": DOCUMENT_COUNT}]))
    assertions.expect_equal(db.count(COLLECTION), DOCUMENT_COUNT + 1, "D2")
