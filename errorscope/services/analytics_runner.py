"""
Timeout and failure isolation for analytics computations.

Senior Engineering Note:
- Every analysis runs under asyncio.wait_for
- A timeout or exception becomes AnalyticsComputationError for that
  analysis only; siblings keep running (gather with return_exceptions)
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from errorscope.errors import AnalyticsComputationError

logger = logging.getLogger(__name__)


class AnalyticsRunner:
    """Runs named analyses with a per-computation timeout."""

    def __init__(self, timeout_seconds: float = 60.0):
        self.timeout_seconds = timeout_seconds

    async def run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run one analysis.

        Raises:
            AnalyticsComputationError: on timeout or any failure inside the analysis
        """
        try:
            return await asyncio.wait_for(factory(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"Analysis {name} timed out after {self.timeout_seconds}s")
            raise AnalyticsComputationError(name, "timed out") from e
        except AnalyticsComputationError:
            raise
        except Exception as e:
            logger.error(f"Analysis {name} failed: {e}", exc_info=True)
            raise AnalyticsComputationError(name, str(e)) from e

    async def run_all(
        self,
        analyses: dict[str, Callable[[], Awaitable[Any]]],
    ) -> dict[str, Any]:
        """
        Run several analyses concurrently.

        Returns:
            name -> result, or name -> AnalyticsComputationError for failures
        """
        names = list(analyses)
        results = await asyncio.gather(
            *(self.run(name, analyses[name]) for name in names),
            return_exceptions=True,
        )
        outcome = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException) and not isinstance(result, AnalyticsComputationError):
                result = AnalyticsComputationError(name, str(result))
            outcome[name] = result
        return outcome
