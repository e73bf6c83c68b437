"""Built-in CLI sub-commands for fieldsync.

* :mod:`~fieldsync.commands.config` -- view and modify the worker configuration.
* :mod:`~fieldsync.commands.cache` -- tier statistics, clearing, maintenance.
* :mod:`~fieldsync.commands.queue` -- list, cancel, reset, and replay queued mutations.
* :mod:`~fieldsync.commands.fetch` -- send one request through the worker.

Commands that touch the stores run their work on a disk-backed worker via
:func:`~fieldsync.runtime.run_with_worker`.
"""
