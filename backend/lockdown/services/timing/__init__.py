"""Timing domain services: question timers, penalties and session totals.

Everything here works on stored timestamps only. HTTP routes and socket
handlers import from these modules so transport concerns stay out of the
timer state machine.
"""
