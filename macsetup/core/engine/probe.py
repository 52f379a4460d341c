"""
Resource probe — observe current state without side effects.

Every failure a handler raises while probing (timeout, permission
denied, collaborator error) becomes an *unknown* ObservedState carrying
the error kind; a probe never raises for a single resource.
"""

from __future__ import annotations

import logging

from macsetup.core.engine.handlers.base import ResourceHandler
from macsetup.core.errors import ErrorKind, ReconcileError
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import ResourceDeclaration

logger = logging.getLogger(__name__)


class ResourceProbe:
    """Dispatches probes to the handler bound at plan time."""

    def probe(self, decl: ResourceDeclaration, handler: ResourceHandler) -> ObservedState:
        try:
            observed = handler.probe(decl)
        except ReconcileError as e:
            logger.warning("Probe of %s failed (%s): %s", decl.id, e.kind.value, e.message)
            return ObservedState.undetermined(e.kind, e.message)
        except Exception as e:
            logger.exception("Unexpected error probing %s", decl.id)
            return ObservedState.undetermined(ErrorKind.EXTERNAL_COMMAND_FAILED, f"{type(e).__name__}: {e}")

        logger.debug(
            "Probed %s: exists=%s matches=%s %s",
            decl.id, observed.exists, observed.matches_desired, observed.detail,
        )
        return observed
