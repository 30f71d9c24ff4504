"""Multi-tenant appointment booking engine.

Hosts publish a booking page (their handle); guests pick a free slot, book it
and later cancel or reschedule through signed, single-use links.
"""
