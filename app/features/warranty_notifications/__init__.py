"""
Warranty notification feature package.

Everything related to warranty-expiration alerts lives here: domain models,
the receipt repository, notification channels, the dedupe/snapshot cache,
the scheduler, worker jobs and the read API.
"""
