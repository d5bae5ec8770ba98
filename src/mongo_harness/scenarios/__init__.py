"""Built-in scenarios and the runner that executes them in isolation."""

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ..config.settings import HarnessSettings
from ..errors import HarnessError
from ..scenario import Scenario
from . import auth, crl_revoked, lock_file, srv_uri

ScenarioFunc = Callable[[Scenario], Awaitable[None]]

SCENARIOS: Dict[str, ScenarioFunc] = {
    "auth": auth.run,
    "lock_file": lock_file.run,
    "crl_revoked": crl_revoked.run,
    "srv_uri": srv_uri.run,
}


@dataclass
class ScenarioOutcome:
    """Verdict of one scenario run."""

    name: str
    passed: bool
    duration: float
    error: Optional[str] = None
    error_type: Optional[str] = None


async def run_scenario(
    name: str,
    settings: Optional[HarnessSettings] = None,
    func: Optional[ScenarioFunc] = None,
    **scenario_kwargs,
) -> ScenarioOutcome:
    """Run one scenario in a fresh scope and turn its result into a verdict.

    Harness errors (assertion failures included) fail the scenario without
    affecting the ones that run after it.
    """
    func = func or SCENARIOS.get(name)
    if func is None:
        raise HarnessError(
            f"Unknown scenario '{name}'",
            f"Available scenarios: {', '.join(sorted(SCENARIOS))}",
        )

    start = time.monotonic()
    try:
        async with Scenario(name, settings, **scenario_kwargs) as scenario:
            await func(scenario)
    except HarnessError as e:
        return ScenarioOutcome(
            name=name,
            passed=False,
            duration=time.monotonic() - start,
            error=str(e),
            error_type=type(e).__name__,
        )

    return ScenarioOutcome(name=name, passed=True, duration=time.monotonic() - start)
