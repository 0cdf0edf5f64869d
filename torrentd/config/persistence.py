"""Persist configuration deltas to the durable store."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from torrentd.config.config_diff import FieldChange, changed_fields
from torrentd.config.kv_store import DurableKV
from torrentd.models import Config
from torrentd.utils.exceptions import PersistenceWriteError

logger = logging.getLogger(__name__)

_MISSING = object()


def sync(
    old: Config,
    new: Config,
    store: DurableKV,
    force: Iterable[str] = (),
) -> list[FieldChange]:
    """Write the fields that differ between ``old`` and ``new`` to ``store``.

    Each changed field is staged with ``store.set`` and logged, then the
    store is flushed once to its backing file. Fields named in ``force`` are
    staged with their value in ``new`` even when unchanged. If there is
    nothing to stage nothing is written.

    If the flush fails the staged values are rolled back, so the store
    never holds values that are not on disk.

    Returns:
        The changes that were written.

    Raises:
        PersistenceWriteError: the backing file could not be written.

    """
    changes = changed_fields(old, new)
    changed_names = {change.name for change in changes}
    forced = [name for name in force if name not in changed_names]
    if not changes and not forced:
        return changes

    previous = {}
    for change in changes:
        previous[change.name] = store.get(change.name, _MISSING)
        store.set(change.name, change.new)
        logger.info("config updated %s: %r -> %r", change.name, change.old, change.new)
    for name in forced:
        value = getattr(new, name)
        previous[name] = store.get(name, _MISSING)
        store.set(name, value)
        logger.info("config reset %s to %r", name, value)

    path = store.config_file_used()
    try:
        store.write_as(path)
    except OSError as e:
        for name, value in previous.items():
            if value is _MISSING:
                store.unset(name)
            else:
                store.set(name, value)
        msg = f"Failed to write config file {path}: {e}"
        raise PersistenceWriteError(
            msg,
            {"path": str(path), "fields": list(previous)},
        ) from e

    logger.info("Config file written: %s", path)
    return changes
