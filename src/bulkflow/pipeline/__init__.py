"""Persisted, poll-driven pipeline for asynchronous remote bulk work.

Why not a broker-backed task queue?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The remote service is itself the queue: work is submitted, processed on the
remote side for minutes or hours, and only becomes downloadable once a status
poll reports it done. What the host needs locally is durable bookkeeping for
each unit of work between polls:

- Stage derived from which remote identifiers and content are already known.
- Per-stage retry counters with arithmetic or geometric back-off.
- Fatal remote error codes that drop an entry instead of retrying it.
- Checksum verification of downloaded bodies before anyone sees them.
- Result delivery to a registered handler, or as an event, after restarts.

A single SQLite file shared by every poller of the same account holds that
state. Pollers coordinate through an atomic lock flag with a lease, so a
crashed poller cannot strand an entry forever.
"""
