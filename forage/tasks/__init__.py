"""Forage task lifecycle — state store, run lock, cycle runner, loop process.

Public surface
--------------
``state``           — per-task records, policy decisions, backoff, purge
``lock``            — single-instance run lock and daemon stop
``runner``          — CycleRunner: one research cycle, loop mode, status helpers
``worker_process``  — detached daemon spawn and the signal-aware loop wrapper
"""
