"""Network access for the worker.

:class:`HttpFetcher` is the only component that talks to the Backend API
or the AI Analysis Service.  It makes exactly one attempt per call; replay
of failed mutations is the sync coordinator's job.
"""

from fieldsync.client.fetcher import HttpFetcher

__all__ = ["HttpFetcher"]
