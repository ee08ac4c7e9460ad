"""Sets up the flow metrics services for an account service process."""

from typing import Any, Mapping, NamedTuple, Optional

from . import config as default_config
from .activity import AccountActivity
from .context import store
from .context.propagator import MetricsContextPropagator
from .context.store import ContextStore
from .devices import DeviceRecorder
from .flow import FlowValidator
from .log import MetricsLog, setup_logger


class Services(NamedTuple):
    """Everything a request handler needs, created once per process."""

    log: MetricsLog
    store: ContextStore
    metrics_context: MetricsContextPropagator
    flow_validator: FlowValidator
    devices: DeviceRecorder
    activity: AccountActivity


def get_config(overrides: Optional[Mapping[str, Any]] = None) -> dict:
    """Collect the upper-case settings from :mod:`.config`."""
    config = {key: getattr(default_config, key)
              for key in dir(default_config) if key.isupper()}
    store.init_app(config)
    if overrides:
        config.update(overrides)
    return config


def _enabled(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ('1', 'true', 'yes')
    return bool(value)


def create_services(db: Any, config: Optional[Mapping[str, Any]] = None,
                    log: Optional[MetricsLog] = None) -> Services:
    """
    Create the services for this process.

    Parameters
    ----------
    db : object
        Device storage; see :class:`.DeviceRecorder`.
    config : dict
        Overrides for :mod:`.config`.
    log : :class:`.MetricsLog`
        Defaults to a sink that writes JSON to stderr.

    Returns
    -------
    :class:`.Services`

    """
    config = get_config(config)
    if log is None:
        log = MetricsLog(setup_logger(config['LOGLEVEL']))
    cache = ContextStore.from_config(config, log=log)
    metrics_context = MetricsContextPropagator(cache, log=log)
    flow_validator = FlowValidator.from_config(config, log=log)
    devices = DeviceRecorder(
        db, log, metrics_context,
        updates_enabled=_enabled(config['DEVICE_UPDATES_ENABLED'])
    )
    activity = AccountActivity(log, metrics_context, flow_validator)
    return Services(log, cache, metrics_context, flow_validator, devices,
                    activity)
