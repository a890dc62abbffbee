"""
Named response checks.

Scenarios validate responses with a mapping of check name to predicate; each
check yields one `checks` Rate sample so the pass ratio can carry a threshold
such as ``checks: ["rate>0.9"]``.
"""

import logging
from typing import Any, Callable, List, Mapping, Tuple

from loadbench.models import Sample

logger = logging.getLogger(__name__)


def check(
    subject: Any,
    checks: Mapping[str, Callable[[Any], Any]],
    *,
    metric: str = "checks",
) -> Tuple[bool, List[Sample]]:
    """
    Run every named predicate against `subject`.

    A predicate that raises counts as a failed check.

    Args:
        subject: Value under test (typically a response)
        checks: check name -> predicate
        metric: Rate metric receiving one sample per check

    Returns:
        (True if every check passed, the Rate samples to attach to the
        IterationResult)
    """
    samples: List[Sample] = []
    all_passed = True

    for name, predicate in checks.items():
        try:
            passed = bool(predicate(subject))
        except Exception as e:
            logger.debug("Check '%s' raised %s: %s", name, type(e).__name__, e)
            passed = False
        if not passed:
            all_passed = False
            logger.debug("Check failed: %s", name)
        samples.append(Sample.rate(metric, passed))

    return all_passed, samples
