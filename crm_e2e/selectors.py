"""
Ordered selector fallbacks.

A control that has no stable id is described as a tuple of strategies, most
specific first. ``resolve_first`` returns the first one that is visible and
logs which strategy won, so selector drift shows up in the run log instead of
as a bare timeout.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from playwright.sync_api import Error as PWError, Locator, TimeoutError as PWTimeoutError

from crm_e2e.config import TIMEOUT_MEDIUM_MS
from crm_e2e.errors import SelectorNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorStrategy:
    name: str
    locate: Callable[[Any], Locator]

    def __call__(self, scope) -> Locator:
        return self.locate(scope)


def css(selector: str, name: str = None) -> SelectorStrategy:
    return SelectorStrategy(name or selector, lambda scope: scope.locator(selector))


def xpath(expression: str, name: str = None) -> SelectorStrategy:
    return SelectorStrategy(name or f"xpath={expression}", lambda scope: scope.locator(f"xpath={expression}"))


def role(aria_role: str, name=None, exact: bool = False) -> SelectorStrategy:
    label = f"role={aria_role}" + (f"[name={name!r}{' exact' if exact else ''}]" if name is not None else "")
    if name is None:
        return SelectorStrategy(label, lambda scope: scope.get_by_role(aria_role))
    return SelectorStrategy(label, lambda scope: scope.get_by_role(aria_role, name=name, exact=exact))


def text(value: str, exact: bool = False) -> SelectorStrategy:
    return SelectorStrategy(f"text={value!r}", lambda scope: scope.get_by_text(value, exact=exact))


def has_text(selector: str, value: str, ignore_case: bool = True) -> SelectorStrategy:
    """
    ``selector`` filtered to elements containing ``value``. Always a regex:
    Playwright matches a plain ``has_text`` string case-insensitively.
    """
    pattern = re.compile(re.escape(value), re.IGNORECASE if ignore_case else 0)
    return SelectorStrategy(
        f"{selector} >> has_text={value!r}",
        lambda scope: scope.locator(selector).filter(has_text=pattern),
    )


def resolve_first(scope, strategies: Sequence[SelectorStrategy], timeout_ms: int = TIMEOUT_MEDIUM_MS,
                  description: str = "element") -> Locator:
    """
    Return the first visible locator among ``strategies``.

    A quick pass checks every strategy without waiting, so an alternative that
    is already on screen wins over a preferred one that never renders. Only
    then is the budget split across the strategies in order, never waiting
    longer than ``timeout_ms`` in total.
    """
    if not strategies:
        raise ValueError("resolve_first needs at least one strategy")

    for strategy in strategies:
        try:
            candidate = strategy(scope).first
            if candidate.is_visible():
                logger.debug(f"resolve_first: {description} found via '{strategy.name}'")
                return candidate
        except PWError as e:
            logger.debug(f"resolve_first: '{strategy.name}' errored: {e}")

    per_strategy_ms = max(500, timeout_ms // len(strategies))
    remaining_ms = timeout_ms
    for strategy in strategies:
        wait_ms = min(per_strategy_ms, remaining_ms)
        if wait_ms <= 0:
            break
        remaining_ms -= wait_ms
        try:
            candidate = strategy(scope).first
            candidate.wait_for(state="visible", timeout=wait_ms)
            logger.debug(f"resolve_first: {description} found via '{strategy.name}' after waiting")
            return candidate
        except PWTimeoutError:
            continue
        except PWError as e:
            logger.debug(f"resolve_first: '{strategy.name}' errored: {e}")

    tried = [s.name for s in strategies]
    raise SelectorNotFoundError(f"Could not find {description}; tried: {', '.join(tried)}", tried=tried)
