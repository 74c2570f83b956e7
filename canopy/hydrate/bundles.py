"""Bundle registry: resolves activation descriptors to live behaviors."""

import logging
from typing import Any, Callable

from ..core.errors import ActivationError
from ..core.models import ActivationDescriptor

logger = logging.getLogger(__name__)


Factory = Callable[..., Any]


class BundleRegistry:
    """Maps bundle locators to factories called with the ctor args.

    Example:
        bundles = BundleRegistry()

        @bundles.register("widgets/counter.js")
        class Counter:
            def __init__(self, start=0):
                self.count = start
    """

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}

    def register(self, locator: str, factory: Factory | None = None):
        """Register a factory, directly or as a decorator."""

        def add(fn: Factory) -> Factory:
            self._factories[locator] = fn
            return fn

        if factory is not None:
            return add(factory)
        return add

    def __contains__(self, locator: object) -> bool:
        return locator in self._factories

    def activate(self, descriptor: ActivationDescriptor) -> Any:
        """Instantiate the behavior for a placeholder.

        Raises:
            ActivationError: Unknown locator, or the factory raised.
        """
        factory = self._factories.get(descriptor.bundle_locator)
        if factory is None:
            raise ActivationError(f"Unknown bundle {descriptor.bundle_locator!r}")
        try:
            return factory(**descriptor.ctor_args)
        except Exception as exc:
            raise ActivationError(
                f"Activating {descriptor.bundle_locator!r} failed: {exc}"
            ) from exc


def dispose_behavior(behavior: Any) -> None:
    """Call behavior.dispose() when the behavior defines one."""
    dispose = getattr(behavior, "dispose", None)
    if callable(dispose):
        dispose()
