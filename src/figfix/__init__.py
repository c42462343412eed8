"""figfix: preview, apply and roll back automated design-lint fixes."""

from figfix._version import __version__
from figfix.core.models import FixOptions
from figfix.fix.cancel import CancelToken
from figfix.fix.engine import AutoFixEngine

__all__ = [
    "__version__",
    "AutoFixEngine",
    "CancelToken",
    "FixOptions",
]
