"""
Install/remove coordinator for the host.

One request runs through an explicit state machine:

    RESOLVE -> SIMULATE -> DRIFT_CHECK -> (done)
                        -> CONFIRM -> EXECUTE -> RESYNC -> (done)

Each state is a method taking the Transaction record and returning either
the next State or the final Response. Terminal outcomes are listed in
Outcome.

Pin markers: a trailing '+' on a requested name records an install intent
in the image configuration, a trailing '-' a removal intent, whatever the
command was. The raw tokens (markers included) are passed to apt-get,
which understands the same syntax.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Union

from .backend import PackageBackend
from .classifier import (
    ErrorCode, benign_packages, classify, find_critical_error, is_benign,
)
from .config import is_atomic
from .database import PackageDatabase
from .desired import DesiredConfig, DesiredConfigStore
from .errors import (
    ApmError, BackendError, ExecutionError, NotFoundError, NothingToDoError,
)
from .image import BootcImageBuilder, ImageBuilder
from .models import DryRunOutcome, Operation, Package, Response, Scope, error_response
from .sync import sync_host

logger = logging.getLogger(__name__)

PIN_INSTALL = '+'
PIN_REMOVE = '-'

# Max alternatives offered through "provides" when a name is unknown
MAX_ALTERNATIVES = 5

Confirmer = Callable[[DryRunOutcome, Operation], bool]


class State(Enum):
    RESOLVE = "resolve"
    SIMULATE = "simulate"
    DRIFT_CHECK = "drift_check"
    CONFIRM = "confirm"
    EXECUTE = "execute"
    RESYNC = "resync"


class Outcome(Enum):
    """How a request ended."""
    APPLIED = "applied"
    NOOP_CONFIG_UPDATED = "noop_config_updated"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    CRITICAL = "critical"
    NOTHING_TO_DO = "nothing_to_do"
    EXECUTION_ERROR = "execution_error"
    INVALID_REQUEST = "invalid_request"


@dataclass
class ResolvedName:
    """A requested token and the cached package it resolved to."""
    token: str
    package: Package

    @property
    def name(self) -> str:
        return self.package.name

    def intent(self, default: Operation) -> Operation:
        """Operation recorded in the image configuration for this name.

        A trailing marker only counts when the lookup had to strip it, so
        ``g++`` stays a plain name.
        """
        if self.token == self.package.name:
            return default
        if self.token.endswith(PIN_INSTALL):
            return Operation.INSTALL
        if self.token.endswith(PIN_REMOVE):
            return Operation.REMOVE
        return default


@dataclass
class Transaction:
    """Everything one request accumulates while moving through the states."""
    operation: Operation
    tokens: List[str]
    apply: bool = False
    resolved: List[ResolvedName] = field(default_factory=list)
    simulation: Optional[DryRunOutcome] = None
    result: Optional[DryRunOutcome] = None
    visited: List[State] = field(default_factory=list)


def name_candidates(token: str) -> Iterator[str]:
    """The token, then the token with trailing markers stripped one by one."""
    yield token
    candidate = token
    while candidate and candidate[-1] in (PIN_INSTALL, PIN_REMOVE):
        candidate = candidate[:-1]
        if candidate:
            yield candidate


def _auto_confirm(outcome: DryRunOutcome, operation: Operation) -> bool:
    return True


class TransactionCoordinator:
    """Runs install/remove requests against the host.

    Args:
        db: Package cache
        backend: Host package manager
        config_store: Desired image configuration
        image_builder: Rebuilds and switches the image (atomic hosts);
                       defaults to BootcImageBuilder
        confirmer: Asked before the real run; defaults to always yes
        atomic: Host boots from an image; defaults to config.is_atomic()
        cancel_event: Passed to the cache refresh
    """

    def __init__(self, db: PackageDatabase, backend: PackageBackend,
                 config_store: DesiredConfigStore = None,
                 image_builder: ImageBuilder = None,
                 confirmer: Confirmer = None,
                 atomic: bool = None,
                 cancel_event: threading.Event = None):
        self.db = db
        self.backend = backend
        self.config_store = config_store or DesiredConfigStore()
        self.image_builder = image_builder or BootcImageBuilder(self.config_store)
        self.confirmer = confirmer or _auto_confirm
        self.atomic = is_atomic() if atomic is None else atomic
        self.cancel_event = cancel_event
        self.scope = Scope.host()

        self._handlers: Dict[State, Callable[[Transaction], Union[State, Response]]] = {
            State.RESOLVE: self.resolve,
            State.SIMULATE: self.simulate,
            State.DRIFT_CHECK: self.drift_check,
            State.CONFIRM: self.confirm,
            State.EXECUTE: self.execute,
            State.RESYNC: self.resync,
        }

    @property
    def drift_correction(self) -> bool:
        """Benign simulation errors update the image config on atomic hosts only."""
        return self.atomic

    # =========================================================================
    # Entry points
    # =========================================================================

    def install(self, names: List[str], apply: bool = False) -> Response:
        return self.run(Operation.INSTALL, names, apply)

    def remove(self, names: List[str], apply: bool = False) -> Response:
        return self.run(Operation.REMOVE, names, apply)

    def check_install(self, names: List[str]) -> Response:
        return self.check(Operation.INSTALL, names)

    def check_remove(self, names: List[str]) -> Response:
        return self.check(Operation.REMOVE, names)

    def run(self, operation: Operation, names: List[str], apply: bool = False) -> Response:
        """Drive one request through the state machine."""
        txn = Transaction(operation=operation, tokens=self._tokens(names), apply=apply)

        invalid = self._validate(txn)
        if invalid is not None:
            return invalid

        state = State.RESOLVE
        try:
            self._ensure_cache()
            while True:
                txn.visited.append(state)
                logger.debug(f"{operation.value}: entering {state.value}")
                step = self._handlers[state](txn)
                if isinstance(step, Response):
                    return step
                state = step
        except NothingToDoError as e:
            logger.info(str(e))
            return error_response(str(e), Outcome.NOTHING_TO_DO, reasons=e.reasons)
        except ExecutionError as e:
            logger.error(f"{operation.value} failed: {e}")
            return error_response(str(e), Outcome.EXECUTION_ERROR)
        except ApmError as e:
            logger.error(f"{operation.value} failed in {state.value}: {e}")
            outcome = (Outcome.EXECUTION_ERROR
                       if state in (State.EXECUTE, State.RESYNC) else Outcome.CRITICAL)
            return error_response(str(e), outcome)

    def check(self, operation: Operation, names: List[str]) -> Response:
        """Simulate only, and report what would happen."""
        tokens = self._tokens(names)
        if not tokens:
            return error_response(self._empty_message(operation), Outcome.INVALID_REQUEST)
        try:
            outcome = self._simulate(tokens, operation)
        except ApmError as e:
            logger.error(f"check {operation.value} failed: {e}")
            return error_response(str(e), Outcome.CRITICAL)

        critical = find_critical_error(outcome.errors)
        if critical is not None:
            return error_response(str(critical), Outcome.CRITICAL, info=outcome.to_dict())
        return Response("Check information", data={'info': outcome.to_dict()})

    # =========================================================================
    # States
    # =========================================================================

    def resolve(self, txn: Transaction) -> Union[State, Response]:
        """Map every requested token onto a cached package."""
        for token in txn.tokens:
            package = self._lookup(token)
            if package is None:
                return self._not_found(token)
            txn.resolved.append(ResolvedName(token=token, package=package))
        return State.SIMULATE

    def simulate(self, txn: Transaction) -> Union[State, Response]:
        txn.simulation = self._simulate(txn.tokens, txn.operation)

        critical = find_critical_error(txn.simulation.errors)
        if critical is not None:
            logger.error(f"Simulation failed: {critical}")
            return error_response(str(critical), Outcome.CRITICAL,
                                  info=txn.simulation.to_dict())

        if not txn.simulation.has_changes():
            return State.DRIFT_CHECK
        return State.CONFIRM

    def drift_check(self, txn: Transaction) -> Union[State, Response]:
        """Nothing would change: maybe the image config is what is stale."""
        errors = txn.simulation.errors
        reasons = [str(e) for e in errors if is_benign(e)]
        message = "The operation will not make any changes"
        if reasons:
            message += ". Reasons:\n" + "\n".join(reasons)

        if not (txn.apply and self.drift_correction):
            raise NothingToDoError(message, reasons)

        config = self.config_store.load()
        changed = []
        for name in benign_packages(errors, ErrorCode.ALREADY_NEWEST):
            if config.add_install(name):
                changed.append(name)
        for name in benign_packages(errors, ErrorCode.PACKAGE_NOT_INSTALLED):
            if config.add_remove(name):
                changed.append(name)

        if not changed:
            raise NothingToDoError(message, reasons)

        logger.info(f"Image configuration out of date for: {', '.join(changed)}")
        image = self._apply_config(config)
        return Response(
            message + "\nThe local image configuration differed from the system, "
                      "the image was updated",
            data={'reasons': reasons, 'configUpdated': changed, 'image': image},
            outcome=Outcome.NOOP_CONFIG_UPDATED,
        )

    def confirm(self, txn: Transaction) -> Union[State, Response]:
        if not self.confirmer(txn.simulation, txn.operation):
            return Response(f"{txn.operation.value.capitalize()} cancelled",
                            outcome=Outcome.CANCELLED)
        return State.EXECUTE

    def execute(self, txn: Transaction) -> Union[State, Response]:
        try:
            output = self.backend.execute_real(txn.tokens, txn.operation)
        except BackendError as e:
            # Prefer the apt message over the exit status
            critical = find_critical_error(classify(e.output).errors) if e.output else None
            message = str(critical) if critical is not None else str(e)
            raise ExecutionError(message) from e

        txn.result = classify(output)
        critical = find_critical_error(txn.result.errors)
        if critical is not None:
            raise ExecutionError(str(critical))
        return State.RESYNC

    def resync(self, txn: Transaction) -> Union[State, Response]:
        self.db.reconcile_installed(self.scope, self.backend.get_installed_snapshot())

        message = self._summary(txn)
        data = {'info': txn.simulation.to_dict()}

        if txn.apply:
            config = self.config_store.load()
            for resolved in txn.resolved:
                config.add(resolved.name, resolved.intent(txn.operation))
            data['image'] = self._apply_config(config)
            message += ". The system image was changed"
        elif self.atomic:
            message += (". The system image was not changed! "
                        "Run with --apply to make the change permanent")

        return Response(message, data=data, outcome=Outcome.APPLIED)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _tokens(names: List[str]) -> List[str]:
        return [n.strip() for n in names or [] if n and n.strip()]

    @staticmethod
    def _empty_message(operation: Operation) -> str:
        return (f"At least one package must be given, "
                f"for example: {operation.value} package")

    def _validate(self, txn: Transaction) -> Optional[Response]:
        if not txn.tokens:
            return error_response(self._empty_message(txn.operation), Outcome.INVALID_REQUEST)
        if txn.apply and not self.atomic:
            return error_response("The apply option is only available on an atomic system",
                                  Outcome.INVALID_REQUEST)
        return None

    def _ensure_cache(self):
        """Scan once if the host cache was never filled."""
        if not self.db.exists(self.scope):
            logger.info("Package cache is empty, updating")
            sync_host(self.db, self.backend, cancel_event=self.cancel_event)

    def _lookup(self, token: str) -> Optional[Package]:
        for candidate in name_candidates(token):
            try:
                return self.db.get_by_name(self.scope, candidate)
            except NotFoundError:
                continue
        return None

    def _not_found(self, token: str) -> Response:
        stripped = token.rstrip(PIN_INSTALL + PIN_REMOVE)
        alternatives = []
        if stripped:
            providers = self.db.query(self.scope, {'provides': stripped},
                                      sort_field='name', limit=MAX_ALTERNATIVES)
            alternatives = [pkg.name for pkg in providers]

        message = str(NotFoundError(token, alternatives))
        if alternatives:
            message += ". Maybe you were looking for: " + ", ".join(alternatives)
        return error_response(message, Outcome.NOT_FOUND, packages=alternatives)

    def _simulate(self, tokens: List[str], operation: Operation) -> DryRunOutcome:
        output = self.backend.execute_dry_run(tokens, operation)
        return classify(output)

    def _apply_config(self, config: DesiredConfig) -> str:
        """Save the config, regenerate the image definition, rebuild and switch."""
        self.config_store.save(config)
        self.config_store.generate_containerfile(config)
        image = self.image_builder.rebuild_and_switch(config)
        self.db.record_image_history(image, config.to_dict())
        return image

    @staticmethod
    def _summary(txn: Transaction) -> str:
        outcome = txn.simulation
        if txn.operation == Operation.REMOVE:
            names = outcome.removed_packages or [r.name for r in txn.resolved]
            return f"{', '.join(names)} successfully removed"
        return (f"{outcome.new_installed_count} packages installed "
                f"and {outcome.upgraded_count} upgraded")
