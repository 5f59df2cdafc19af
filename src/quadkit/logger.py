"""Contains the name for the logger of QuadKit modules.

``quadkit`` uses a simple logging system based on the
`Logging <https://docs.python.org/3/library/logging.html>`__ standard library.
Logging messages are grouped in different levels:

* ``DEBUG``: Model lifecycle details when ``verbose=False``.
* ``INFO``: Taping, export and load events when ``verbose=True``.
* ``WARNING``: An indication that something unexpected
    happened, e.g. a cached model had to be recompiled.

By default, only messages of level ``WARNING`` are displayed.

Calling applications can configure the format and log level of the displayed messages
by `Configuring Logging <https://docs.python.org/3/howto/logging.html#configuring-logging>`__
for ``quadkit.logger.quadkit_logger``, e.g.::

    >>> import logging
    >>> logging.basicConfig(
    ...     level=logging.INFO,
    ...     format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    ... )
"""
import logging

logger_name = "quadkit"
quadkit_logger = logging.getLogger(logger_name)


def lifecycle_level(verbose: bool) -> int:
    """Returns the log level used for model lifecycle messages."""
    return logging.INFO if verbose else logging.DEBUG
